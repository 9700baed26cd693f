#!/usr/bin/env python3
"""
MusicBrainz Search Client ("mbs")
Looks up raw playback details in the MusicBrainz recording search and returns
scored candidates carrying canonical recording and release-group IDs
"""

import time
import logging
import threading
from typing import Any, Dict, List, Optional, Protocol
from uuid import UUID

import requests

import config
from errors import LookupUnavailableError
from matching import calculate_similarity, score_candidate
from models import ArtistCredit, MatchCandidate

logger = logging.getLogger(__name__)

# Lucene special characters that need escaping
LUCENE_SPECIAL_CHARS = ['\\', '+', '-', '&', '|', '!', '(', ')', '{', '}', '[', ']', '^', '"', '~', '*', '?', ':', '/']


def _text(value) -> str:
    return value if isinstance(value, str) else ''


class PlaybackLookup(Protocol):
    """What the playback service needs from a catalog lookup"""

    def identify_playback(self, recording_title: str, release_title: str,
                          artists: List[str]) -> List[MatchCandidate]:
        """Return scored candidates, best first. Raise LookupUnavailableError when unreachable."""


class MbsClient:
    """MusicBrainz recording search with rate limiting and candidate scoring"""

    def __init__(self, base_url=None, timeout=None, min_request_interval=None,
                 search_limit=None, session=None):
        """
        Initialize the client

        Args:
            base_url: WS/2 root, e.g. https://musicbrainz.org/ws/2
            timeout: Per-request timeout in seconds
            min_request_interval: Minimum seconds between two requests
            search_limit: Number of recordings requested per search
            session: Optional requests.Session (tests pass a mock)
        """
        self.base_url = (base_url or config.MBS_BASE_URL).rstrip('/')
        self.timeout = timeout if timeout is not None else config.MBS_TIMEOUT
        self.min_request_interval = (
            min_request_interval if min_request_interval is not None
            else config.MBS_MIN_REQUEST_INTERVAL
        )
        self.search_limit = search_limit or config.MBS_SEARCH_LIMIT

        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': config.MBS_USER_AGENT,
            'Accept': 'application/json'
        })

        # Rate limiting, shared by all request threads of this worker
        self.last_request_time = 0
        self._rate_lock = threading.Lock()

        logger.debug(f"mbs client: {self.base_url} (timeout {self.timeout}s, "
                     f"interval {self.min_request_interval}s)")

    def rate_limit(self):
        """Enforce rate limiting for the MusicBrainz API"""
        with self._rate_lock:
            elapsed = time.time() - self.last_request_time
            if elapsed < self.min_request_interval:
                sleep_time = self.min_request_interval - elapsed
                logger.debug("rate_limit: sleep")
                time.sleep(sleep_time)
            self.last_request_time = time.time()

    def _escape_lucene_query(self, text):
        """
        Escape special characters for Lucene query syntax

        Args:
            text: Text to escape

        Returns:
            Escaped text safe for Lucene queries
        """
        escaped = text
        for char in LUCENE_SPECIAL_CHARS:
            escaped = escaped.replace(char, f'\\{char}')
        return escaped

    def build_query(self, recording_title: str, release_title: str, artists: List[str]) -> str:
        """
        Build the Lucene query for a recording search

        Example:
            recording:"Xyz" AND release:"Abc Live" AND (artist:"A" OR artist:"B")
        """
        terms = [f'recording:"{self._escape_lucene_query(recording_title)}"']
        if release_title:
            terms.append(f'release:"{self._escape_lucene_query(release_title)}"')

        artist_terms = [f'artist:"{self._escape_lucene_query(a)}"' for a in artists if a]
        if len(artist_terms) == 1:
            terms.append(artist_terms[0])
        elif artist_terms:
            terms.append('(' + ' OR '.join(artist_terms) + ')')

        return ' AND '.join(terms)

    def search_recordings(self, query: str) -> List[Dict[str, Any]]:
        """
        Run a recording search

        Args:
            query: Lucene query string

        Returns:
            List of MusicBrainz recording dicts (possibly empty)

        Raises:
            LookupUnavailableError: On timeout, connection failure, server
                error or an unreadable response
        """
        self.rate_limit()

        url = f"{self.base_url}/recording/"
        params = {
            'query': query,
            'fmt': 'json',
            'limit': self.search_limit
        }

        logger.debug(f"Searching MusicBrainz recordings: {query}")

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout:
            logger.warning(f"MusicBrainz search timed out after {self.timeout}s")
            raise LookupUnavailableError('Catalog lookup timed out')
        except requests.exceptions.RequestException as e:
            logger.error(f"MusicBrainz search failed: {e}")
            raise LookupUnavailableError('Catalog lookup failed')

        if response.status_code == 404:
            return []
        if response.status_code != 200:
            logger.warning(f"MusicBrainz search failed (status {response.status_code})")
            raise LookupUnavailableError(
                f'Catalog lookup failed with status {response.status_code}'
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Unreadable MusicBrainz response: {e}")
            raise LookupUnavailableError('Catalog returned an unreadable response')

        recordings = data.get('recordings') if isinstance(data, dict) else None
        if not isinstance(recordings, list):
            logger.error(f"Unexpected MusicBrainz response shape: {type(data).__name__}")
            raise LookupUnavailableError('Catalog returned an unexpected response')

        return [r for r in recordings if isinstance(r, dict)]

    def _best_release(self, recording: Dict[str, Any], release_title: str) -> Optional[Dict[str, Any]]:
        """Release of this recording whose title is closest to the submitted one"""
        releases = [
            r for r in recording.get('releases') or []
            if isinstance(r, dict) and isinstance(r.get('release-group'), dict)
            and r['release-group'].get('id')
        ]
        if not releases:
            return None
        return max(releases, key=lambda r: calculate_similarity(release_title, _text(r.get('title'))))

    def _to_candidate(self, recording: Dict[str, Any], recording_title: str,
                      release_title: str, artists: List[str]) -> Optional[MatchCandidate]:
        release = self._best_release(recording, release_title)
        if release is None:
            logger.debug(f"Skipping recording {recording.get('id')}: no release group")
            return None

        credits = recording.get('artist-credit')
        credit = ArtistCredit.from_musicbrainz(
            [c for c in credits if isinstance(c, dict)] if isinstance(credits, list) else []
        )
        credited_names = list(credit.artist_names) if credit else []

        try:
            recording_id = UUID(str(recording['id']))
            release_group_id = UUID(str(release['release-group']['id']))
        except (KeyError, ValueError):
            logger.debug(f"Skipping recording with malformed IDs: {recording.get('id')}")
            return None

        candidate_recording_title = _text(recording.get('title'))
        candidate_release_title = _text(release.get('title'))
        score = score_candidate(
            recording_title, release_title, artists,
            candidate_recording_title, candidate_release_title, credited_names
        )

        return MatchCandidate(
            recording_id=recording_id,
            release_group_id=release_group_id,
            score=score,
            recording_title=candidate_recording_title,
            release_title=candidate_release_title,
            artist_credit=credit
        )

    def identify_playback(self, recording_title: str, release_title: str,
                          artists: List[str]) -> List[MatchCandidate]:
        """
        Find catalog candidates for a raw playback

        Args:
            recording_title: Submitted track title
            release_title: Submitted album title
            artists: Submitted artist names

        Returns:
            Candidates sorted by score, best first (empty when nothing found)

        Raises:
            LookupUnavailableError: If MusicBrainz cannot be reached
        """
        query = self.build_query(recording_title, release_title, artists)
        recordings = self.search_recordings(query)

        candidates = []
        for recording in recordings:
            candidate = self._to_candidate(recording, recording_title, release_title, artists)
            if candidate is not None:
                candidates.append(candidate)

        candidates.sort(key=lambda c: c.score, reverse=True)

        if candidates:
            best = candidates[0]
            logger.info(f"mbs: {len(candidates)} candidates for '{recording_title}', "
                        f"best '{best.recording_title}' ({best.score})")
        else:
            logger.info(f"mbs: no candidates for '{recording_title}'")

        return candidates
