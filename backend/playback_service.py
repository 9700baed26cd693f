"""
Playback Reconciliation Service

Records playback events and reconciles them against the catalog lookup:
a submission gets canonical recording/release-group IDs attached when the
best candidate scores at least the caller's threshold, and is stored as a
"broken" playback otherwise. Broken playbacks can be re-resolved later.

The service is wired explicitly with a PlaybackRepository and a
PlaybackLookup (see mbs_client.MbsClient).
"""

import time
import uuid
import logging
from dataclasses import replace
from typing import Any, Callable, List, Optional
from uuid import UUID

import config
from errors import (
    ConflictError,
    ForbiddenError,
    LookupUnavailableError,
    NotFoundError,
    PlaybackError,
    ValidationError,
)
from matching import select_best_match
from mbs_client import PlaybackLookup
from models import (
    BatchResultItem,
    MatchCandidate,
    NowPlaying,
    Page,
    Pageable,
    Playback,
    PlaybackPatch,
    PlaybackSubmission,
    User,
)
from playback_repo import PlaybackRepository

logger = logging.getLogger(__name__)


def validate_threshold(threshold) -> int:
    """
    Check a match threshold

    Raises:
        ValidationError: Unless threshold is an integer between 0 and 100
    """
    if isinstance(threshold, bool) or not isinstance(threshold, int):
        raise ValidationError('threshold must be an integer')
    if not 0 <= threshold <= 100:
        raise ValidationError('threshold must be between 0 and 100')
    return threshold


def demand_ownership(playback: Playback, user: User):
    """Raise ForbiddenError unless user owns the playback"""
    if playback.user_id != user.id:
        logger.warning(f"User {user.id} denied access to playback {playback.id}")
        raise ForbiddenError('You do not own this playback')


class PlaybackService:
    """Business operations on playbacks"""

    def __init__(self, repository: PlaybackRepository, lookup: PlaybackLookup,
                 clock: Callable[[], float] = time.time,
                 id_factory: Callable[[], UUID] = uuid.uuid4):
        self.repository = repository
        self.lookup = lookup
        self.clock = clock
        self.id_factory = id_factory

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def _find_match(self, artists: List[str], recording_title: str, release_title: str,
                    threshold: int) -> Optional[MatchCandidate]:
        """Best candidate at or above threshold. LookupUnavailableError propagates."""
        candidates = self.lookup.identify_playback(recording_title, release_title, artists)
        return select_best_match(candidates, threshold)

    def _find_match_or_none(self, artists: List[str], recording_title: str,
                            release_title: str, threshold: int) -> Optional[MatchCandidate]:
        """Like _find_match, but an unreachable catalog counts as no match"""
        try:
            return self._find_match(artists, recording_title, release_title, threshold)
        except LookupUnavailableError as e:
            logger.info(f"Failed to look up details via mbs for '{recording_title}': {e.message}")
            return None

    def _load(self, identifier: UUID) -> Playback:
        playback = self.repository.find_by_id(identifier)
        if playback is None:
            raise NotFoundError('Playback', identifier)
        return playback

    def _load_owned(self, identifier: UUID, user: User) -> Playback:
        playback = self._load(identifier)
        demand_ownership(playback, user)
        return playback

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_playback(self, submission: PlaybackSubmission, threshold: int, user: User) -> Playback:
        """
        Record a new playback for user.

        The catalog is queried once. If the best candidate scores at least
        threshold its IDs are attached, otherwise the playback is stored
        broken. A lookup miss or an unreachable catalog never fails creation.

        Args:
            submission: Validated raw playback details
            threshold: Minimum candidate score (0-100) to accept a match
            user: Submitting user, who becomes the owner

        Returns:
            The stored playback
        """
        validate_threshold(threshold)

        if submission.id is not None and self.repository.find_by_id(submission.id) is not None:
            raise ConflictError(f'Playback {submission.id} already exists')

        playback = Playback(
            id=submission.id or self.id_factory(),
            user_id=user.id,
            artists=list(submission.artists),
            recording_title=submission.recording_title,
            release_title=submission.release_title,
            timestamp=submission.timestamp if submission.timestamp is not None else int(self.clock()),
            track_length=submission.track_length,
            play_time=submission.play_time if submission.play_time is not None else submission.track_length,
            disc_number=submission.disc_number,
            track_number=submission.track_number,
            source=submission.source
        )

        match = self._find_match_or_none(
            playback.artists, playback.recording_title, playback.release_title, threshold
        )
        if match is not None:
            playback = playback.with_match(match)

        stored = self.repository.insert(playback)
        logger.info(f"Created playback {stored.id} for user {user.id} "
                    f"({'broken' if stored.broken else 'resolved'})")
        return stored

    def batch_create_playbacks(self, items: List[Any], threshold: int, user: User) -> List[BatchResultItem]:
        """
        Record many playbacks; one invalid item does not fail the batch.

        Args:
            items: Raw JSON objects, each validated on its own
            threshold: Minimum candidate score to accept a match
            user: Submitting user

        Returns:
            One BatchResultItem per input item, in order
        """
        validate_threshold(threshold)

        results = []
        for item in items:
            try:
                submission = PlaybackSubmission.from_json(item)
                playback = self.create_playback(submission, threshold, user)
            except PlaybackError as e:
                logger.debug(f"Skipping batch item: {e.message}")
                results.append(BatchResultItem(success=False, error=e.message))
                continue

            results.append(BatchResultItem(success=True, id=playback.id))

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Batch import for user {user.id}: {succeeded}/{len(results)} stored")
        return results

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def find_all(self, pageable: Pageable) -> Page:
        """Playbacks of every user (administrative listing)"""
        return self.repository.find_all(pageable)

    def find_all_for_user(self, user: User, only_broken: bool, pageable: Pageable) -> Page:
        return self.repository.find_for_user(user.id, only_broken, pageable)

    def get_playback(self, identifier: UUID) -> Playback:
        return self._load(identifier)

    def get_accumulated_broken_playbacks(self, user: User, pageable: Pageable) -> Page:
        """User's broken playbacks grouped by identical raw details"""
        return self.repository.find_accumulated_broken(user.id, pageable)

    # ------------------------------------------------------------------
    # Modify
    # ------------------------------------------------------------------

    def delete_playback(self, identifier: UUID, user: User):
        """
        Permanently delete a playback.

        Raises:
            NotFoundError: If no playback has this identifier
            ForbiddenError: If user does not own it
        """
        self._load_owned(identifier, user)
        if not self.repository.delete(identifier):
            raise NotFoundError('Playback', identifier)
        logger.info(f"User {user.id} deleted playback {identifier}")

    def update_playback(self, identifier: UUID, patch: PlaybackPatch, user: User) -> Playback:
        """
        Apply a partial update to a playback's raw details.

        Fields absent from the patch are left untouched. Canonical IDs are
        not re-detected; use detect_and_update_mb_details for that.

        Raises:
            NotFoundError: If no playback has this identifier
            ForbiddenError: If user does not own it
        """
        playback = self._load_owned(identifier, user)

        if patch.is_empty():
            return playback

        updated = self.repository.update(patch.apply_to(playback))
        logger.info(f"User {user.id} updated playback {identifier}: {sorted(patch.changes())}")
        return updated

    def detect_and_update_mb_details(self, identifier: UUID, threshold: int, user: User) -> Playback:
        """
        Re-run the catalog lookup for a stored playback.

        If a candidate now reaches threshold its IDs are attached and the
        playback is saved; otherwise the playback is returned unchanged.

        Raises:
            NotFoundError: If no playback has this identifier
            ForbiddenError: If user does not own it
            LookupUnavailableError: If the catalog cannot be reached
        """
        validate_threshold(threshold)
        playback = self._load_owned(identifier, user)

        match = self._find_match(
            playback.artists, playback.recording_title, playback.release_title, threshold
        )
        if match is None:
            logger.info(f"No match at threshold {threshold} for playback {identifier}")
            return playback

        if (match.recording_id == playback.recording_id
                and match.release_group_id == playback.release_group_id):
            return playback

        updated = self.repository.update(playback.with_match(match))
        logger.info(f"Resolved playback {identifier} to recording {match.recording_id} "
                    f"(score {match.score})")
        return updated

    # ------------------------------------------------------------------
    # Now playing
    # ------------------------------------------------------------------

    def set_now_playing(self, submission: PlaybackSubmission, threshold: int, user: User) -> NowPlaying:
        """
        Replace the user's now-playing entry.

        The entry expires after the track length (or
        NOW_PLAYING_DEFAULT_LENGTH seconds) from the submitted timestamp.
        """
        validate_threshold(threshold)

        started = submission.timestamp if submission.timestamp is not None else int(self.clock())
        length = submission.track_length if submission.track_length is not None else config.NOW_PLAYING_DEFAULT_LENGTH

        now_playing = NowPlaying(
            user_id=user.id,
            artists=list(submission.artists),
            recording_title=submission.recording_title,
            release_title=submission.release_title,
            expires_at=started + length
        )

        match = self._find_match_or_none(
            now_playing.artists, now_playing.recording_title, now_playing.release_title, threshold
        )
        if match is not None:
            now_playing = replace(
                now_playing,
                recording_id=match.recording_id,
                release_group_id=match.release_group_id
            )

        return self.repository.save_now_playing(now_playing)

    def get_now_playing(self, user: User) -> NowPlaying:
        """
        Raises:
            NotFoundError: If the user has no entry or it has expired
        """
        now_playing = self.repository.find_now_playing(user.id)
        if now_playing is None or now_playing.is_expired(self.clock()):
            raise NotFoundError('Now playing entry')
        return now_playing
