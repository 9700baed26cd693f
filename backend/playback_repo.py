"""
Playback storage

PlaybackRepository is the contract the playback service is written against;
PostgresPlaybackRepository implements it on top of db_utils.
"""

import logging
from typing import List, Optional, Protocol
from uuid import UUID

from psycopg.errors import UniqueViolation
from psycopg.types.json import Jsonb

import db_utils as db_tools
from errors import ConflictError, NotFoundError
from models import AccumulatedPlayback, NowPlaying, Page, Pageable, Playback

logger = logging.getLogger(__name__)


class PlaybackRepository(Protocol):
    """Store for playbacks and now-playing entries"""

    def insert(self, playback: Playback) -> Playback:
        """Persist a new playback and return it as stored. Raise ConflictError if the id is taken."""

    def find_by_id(self, playback_id: UUID) -> Optional[Playback]:
        """Return the playback or None."""

    def update(self, playback: Playback) -> Playback:
        """Overwrite a stored playback. Raise NotFoundError if it no longer exists."""

    def delete(self, playback_id: UUID) -> bool:
        """Delete a playback, returning whether a row was removed."""

    def find_all(self, pageable: Pageable) -> Page:
        """Page of playbacks across all users."""

    def find_for_user(self, user_id: UUID, only_broken: bool, pageable: Pageable) -> Page:
        """Page of one user's playbacks, optionally only broken ones."""

    def find_accumulated_broken(self, user_id: UUID, pageable: Pageable) -> Page:
        """Page of AccumulatedPlayback groups, most frequent first."""

    def find_broken(self, limit: int) -> List[Playback]:
        """Most recent broken playbacks across all users."""

    def find_now_playing(self, user_id: UUID) -> Optional[NowPlaying]:
        """Return the user's now-playing entry, expired or not."""

    def save_now_playing(self, now_playing: NowPlaying) -> NowPlaying:
        """Insert or replace the user's now-playing entry."""


# ============================================================================
# SQL FRAGMENTS
# ============================================================================

PLAYBACK_COLUMNS = """
    id, user_id, artists, recording_title, release_title, track_length,
    play_time, disc_number, track_number, "timestamp", source,
    recording_id, release_group_id, created_at, updated_at"""

BROKEN_CONDITION = "(recording_id IS NULL OR release_group_id IS NULL)"

# Pageable.sort is whitelisted; map it to a quoted column
SORT_COLUMNS = {
    'timestamp': '"timestamp"',
    'created_at': 'created_at',
    'recording_title': 'recording_title',
    'release_title': 'release_title',
}


def _order_by(pageable: Pageable) -> str:
    column = SORT_COLUMNS[pageable.sort]
    direction = 'ASC' if pageable.direction == 'asc' else 'DESC'
    return f"ORDER BY {column} {direction}, id"


class PostgresPlaybackRepository:
    """PlaybackRepository backed by the playbacks/now_playing tables"""

    def insert(self, playback: Playback) -> Playback:
        try:
            row = db_tools.execute_query(f"""
                INSERT INTO playbacks (
                    id, user_id, artists, recording_title, release_title, track_length,
                    play_time, disc_number, track_number, "timestamp", source,
                    recording_id, release_group_id
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {PLAYBACK_COLUMNS}
            """, (
                playback.id, playback.user_id, Jsonb(playback.artists),
                playback.recording_title, playback.release_title, playback.track_length,
                playback.play_time, playback.disc_number, playback.track_number,
                playback.timestamp, playback.source,
                playback.recording_id, playback.release_group_id
            ), fetch_one=True)
        except UniqueViolation:
            raise ConflictError(f'Playback {playback.id} already exists')

        logger.info(f"Stored playback {playback.id} for user {playback.user_id}")
        return Playback.from_row(row)

    def find_by_id(self, playback_id: UUID) -> Optional[Playback]:
        row = db_tools.execute_query(
            f"SELECT {PLAYBACK_COLUMNS} FROM playbacks WHERE id = %s",
            (playback_id,),
            fetch_one=True
        )
        return Playback.from_row(row) if row else None

    def update(self, playback: Playback) -> Playback:
        row = db_tools.execute_query(f"""
            UPDATE playbacks
            SET artists = %s,
                recording_title = %s,
                release_title = %s,
                track_length = %s,
                play_time = %s,
                disc_number = %s,
                track_number = %s,
                "timestamp" = %s,
                source = %s,
                recording_id = %s,
                release_group_id = %s,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = %s
            RETURNING {PLAYBACK_COLUMNS}
        """, (
            Jsonb(playback.artists), playback.recording_title, playback.release_title,
            playback.track_length, playback.play_time, playback.disc_number,
            playback.track_number, playback.timestamp, playback.source,
            playback.recording_id, playback.release_group_id,
            playback.id
        ), fetch_one=True)

        # Deleted by a concurrent request between load and update
        if row is None:
            raise NotFoundError('Playback', playback.id)
        return Playback.from_row(row)

    def delete(self, playback_id: UUID) -> bool:
        affected = db_tools.execute_update(
            "DELETE FROM playbacks WHERE id = %s",
            (playback_id,)
        )
        return affected > 0

    def _find_page(self, where_clause: str, params: tuple, pageable: Pageable) -> Page:
        count_result = db_tools.execute_query(
            f"SELECT COUNT(*) as count FROM playbacks {where_clause}",
            params or None,
            fetch_one=True
        )
        total = count_result['count'] if count_result else 0

        rows = db_tools.execute_query(f"""
            SELECT {PLAYBACK_COLUMNS}
            FROM playbacks
            {where_clause}
            {_order_by(pageable)}
            LIMIT %s OFFSET %s
        """, params + (pageable.size, pageable.offset))

        return Page([Playback.from_row(row) for row in rows], total, pageable)

    def find_all(self, pageable: Pageable) -> Page:
        return self._find_page("", (), pageable)

    def find_for_user(self, user_id: UUID, only_broken: bool, pageable: Pageable) -> Page:
        where_clause = "WHERE user_id = %s"
        if only_broken:
            where_clause += f" AND {BROKEN_CONDITION}"
        return self._find_page(where_clause, (user_id,), pageable)

    def find_accumulated_broken(self, user_id: UUID, pageable: Pageable) -> Page:
        count_result = db_tools.execute_query(f"""
            SELECT COUNT(*) as count FROM (
                SELECT 1
                FROM playbacks
                WHERE user_id = %s AND {BROKEN_CONDITION}
                GROUP BY artists, recording_title, release_title
            ) grouped
        """, (user_id,), fetch_one=True)
        total = count_result['count'] if count_result else 0

        rows = db_tools.execute_query(f"""
            SELECT artists, recording_title, release_title, COUNT(*) as count
            FROM playbacks
            WHERE user_id = %s AND {BROKEN_CONDITION}
            GROUP BY artists, recording_title, release_title
            ORDER BY count DESC, recording_title
            LIMIT %s OFFSET %s
        """, (user_id, pageable.size, pageable.offset))

        items = [
            AccumulatedPlayback(
                artists=list(row['artists']),
                recording_title=row['recording_title'],
                release_title=row['release_title'],
                count=row['count']
            )
            for row in rows
        ]
        return Page(items, total, pageable)

    def find_broken(self, limit: int) -> List[Playback]:
        rows = db_tools.execute_query(f"""
            SELECT {PLAYBACK_COLUMNS}
            FROM playbacks
            WHERE {BROKEN_CONDITION}
            ORDER BY "timestamp" DESC
            LIMIT %s
        """, (limit,))
        return [Playback.from_row(row) for row in rows]

    def find_now_playing(self, user_id: UUID) -> Optional[NowPlaying]:
        row = db_tools.execute_query("""
            SELECT user_id, artists, recording_title, release_title, expires_at,
                   recording_id, release_group_id
            FROM now_playing
            WHERE user_id = %s
        """, (user_id,), fetch_one=True)
        return NowPlaying.from_row(row) if row else None

    def save_now_playing(self, now_playing: NowPlaying) -> NowPlaying:
        row = db_tools.execute_query("""
            INSERT INTO now_playing (
                user_id, artists, recording_title, release_title, expires_at,
                recording_id, release_group_id
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (user_id) DO UPDATE
            SET artists = EXCLUDED.artists,
                recording_title = EXCLUDED.recording_title,
                release_title = EXCLUDED.release_title,
                expires_at = EXCLUDED.expires_at,
                recording_id = EXCLUDED.recording_id,
                release_group_id = EXCLUDED.release_group_id,
                updated_at = CURRENT_TIMESTAMP
            RETURNING user_id, artists, recording_title, release_title, expires_at,
                      recording_id, release_group_id
        """, (
            now_playing.user_id, Jsonb(now_playing.artists),
            now_playing.recording_title, now_playing.release_title,
            now_playing.expires_at, now_playing.recording_id, now_playing.release_group_id
        ), fetch_one=True)
        return NowPlaying.from_row(row)
