#!/usr/bin/env python3
"""
Repair Broken Playbacks

Re-runs the MusicBrainz lookup for playbacks stored without canonical IDs
(across all users) and attaches recording/release-group IDs where a
candidate now reaches the match threshold.

Playbacks whose lookup still finds nothing good enough are left untouched.
An unreachable MusicBrainz counts as an error for that playback only.

Usage:
    python repair_broken_playbacks.py --limit 100
    python repair_broken_playbacks.py --threshold 80 --dry-run
    python repair_broken_playbacks.py --debug

Rate Limiting:
    Respects the MusicBrainz rate limit (MBS_MIN_REQUEST_INTERVAL between requests).
"""

import logging

from script_base import ScriptBase, run_script

from dotenv import load_dotenv

load_dotenv()

from db_utils import test_connection
from errors import LookupUnavailableError
from matching import select_best_match
from mbs_client import MbsClient
from playback_repo import PostgresPlaybackRepository
from playback_service import validate_threshold

logger = logging.getLogger(__name__)


def repair_playbacks(repository, lookup, threshold, limit, dry_run=False, log=None):
    """
    Resolve up to limit broken playbacks

    Args:
        repository: PlaybackRepository to read and update
        lookup: PlaybackLookup used to find candidates
        threshold: Minimum candidate score to accept (0-100)
        limit: Maximum number of broken playbacks to process
        dry_run: Report matches without saving them
        log: Logger to report progress on (default: module logger)

    Returns:
        Stats dict: found, resolved, still_broken, errors
    """
    log = log or logger
    validate_threshold(threshold)

    stats = {
        'found': 0,
        'resolved': 0,
        'still_broken': 0,
        'errors': 0,
    }

    playbacks = repository.find_broken(limit)
    stats['found'] = len(playbacks)
    log.info(f"Found {len(playbacks)} broken playbacks to process")

    for i, playback in enumerate(playbacks, 1):
        artists = ', '.join(playback.artists)
        log.info(f"[{i}/{len(playbacks)}] {artists} - {playback.recording_title} "
                 f"({playback.release_title})")

        try:
            candidates = lookup.identify_playback(
                playback.recording_title, playback.release_title, playback.artists
            )
        except LookupUnavailableError as e:
            log.error(f"  Lookup failed: {e.message}")
            stats['errors'] += 1
            continue

        match = select_best_match(candidates, threshold)
        if match is None:
            best = candidates[0].score if candidates else None
            log.info(f"  No match (best score: {best})")
            stats['still_broken'] += 1
            continue

        log.info(f"  Match: '{match.recording_title}' on '{match.release_title}' "
                 f"(score {match.score})")

        if not dry_run:
            repository.update(playback.with_match(match))

        stats['resolved'] += 1

    return stats


def main():
    script = ScriptBase(
        name="repair_broken_playbacks",
        description="Re-run MusicBrainz matching for playbacks without canonical IDs",
        epilog="""
Examples:
  python repair_broken_playbacks.py --limit 100
  python repair_broken_playbacks.py --threshold 80 --dry-run
  python repair_broken_playbacks.py --limit 1000 --debug
        """
    )

    script.add_dry_run_arg()
    script.add_debug_arg()
    script.add_limit_arg(default=100)
    script.add_threshold_arg()

    args = script.parse_args()

    script.print_header({
        "DRY RUN": args.dry_run,
    })
    script.logger.info(f"Match threshold: {args.threshold}")

    if not test_connection():
        return False

    mbs = MbsClient()
    script.logger.info(f"MusicBrainz rate limit: {mbs.min_request_interval}s between requests")
    script.logger.info("")

    stats = repair_playbacks(
        PostgresPlaybackRepository(),
        mbs,
        threshold=args.threshold,
        limit=args.limit,
        dry_run=args.dry_run,
        log=script.logger
    )

    script.print_summary(stats)
    return stats['errors'] == 0


if __name__ == "__main__":
    run_script(main)
