"""
Data model for playback tracking

Covers the catalog read side (ArtistCredit, MatchCandidate), the records this
service owns (Playback, NowPlaying), the validated request payloads
(PlaybackSubmission, PlaybackPatch) and paging (Pageable, Page).
"""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import UUID

import config
from errors import ValidationError
from utils.helpers import safe_strip


class _Unset:
    """Marker for a patch field that was not supplied at all"""

    def __repr__(self):
        return 'UNSET'

    def __bool__(self):
        return False


UNSET = _Unset()


# ============================================================================
# VALIDATION HELPERS
# ============================================================================

# Column limits of the playbacks table (sql/schema.sql)
MAX_TITLE_LENGTH = 511
MAX_INTEGER = 2 ** 31 - 1
MAX_BIGINT = 2 ** 63 - 1

TEXT_LIMITS = {
    'recording_title': MAX_TITLE_LENGTH,
    'release_title': MAX_TITLE_LENGTH,
}
INT_LIMITS = {
    'disc_number': MAX_INTEGER,
    'track_number': MAX_INTEGER,
}


def _clean_text(value, key: str, required: bool) -> Optional[str]:
    if value is None:
        if required:
            raise ValidationError(f"'{key}' is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"'{key}' must be a string")
    cleaned = safe_strip(value)
    if cleaned is None and required:
        raise ValidationError(f"'{key}' must not be blank")
    max_length = TEXT_LIMITS.get(key)
    if cleaned is not None and max_length is not None and len(cleaned) > max_length:
        raise ValidationError(f"'{key}' must be at most {max_length} characters")
    return cleaned


def _clean_int(value, key: str) -> Optional[int]:
    if value is None:
        return None
    # bool is a subclass of int; true/false is never a valid length or number
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"'{key}' must be an integer")
    if value < 0:
        raise ValidationError(f"'{key}' must not be negative")
    maximum = INT_LIMITS.get(key, MAX_BIGINT)
    if value > maximum:
        raise ValidationError(f"'{key}' must be at most {maximum}")
    return value


def _clean_artists(value) -> List[str]:
    if not isinstance(value, list) or not value:
        raise ValidationError("'artists' must be a non-empty list of names")
    artists = []
    for artist in value:
        if not isinstance(artist, str) or safe_strip(artist) is None:
            raise ValidationError("'artists' must only contain non-blank names")
        artists.append(artist.strip())
    return artists


def _clean_uuid(value, key: str) -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(f"'{key}' must be a UUID")


def _as_uuid(value) -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    return UUID(str(value))


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ============================================================================
# CATALOG READ SIDE
# ============================================================================

@dataclass(frozen=True)
class ArtistCredit:
    """
    Artist credit as stored by the catalog: one or more artists credited
    together on a recording or release.

    Attributes:
        name: Display string, artist names joined with their join phrases
        artist_count: Number of distinct artists in the credit (>= 1)
        ref_count: Number of catalog records referencing the credit (>= 0)
        created: First appearance in the catalog, when known
        artist_names: Individual credited names, in credit order
    """
    name: str
    artist_count: int = 1
    ref_count: int = 0
    created: Optional[datetime] = None
    artist_names: Tuple[str, ...] = field(default=(), compare=False)

    def __post_init__(self):
        if self.artist_count < 1:
            raise ValueError(f"artist_count must be at least 1, got {self.artist_count}")
        if self.ref_count < 0:
            raise ValueError(f"ref_count must not be negative, got {self.ref_count}")

    @classmethod
    def from_musicbrainz(cls, credits: List[Dict[str, Any]],
                         ref_count: int = 0) -> Optional['ArtistCredit']:
        """
        Build a credit from a MusicBrainz 'artist-credit' array

        Args:
            credits: List of {'name', 'joinphrase', 'artist': {'id', 'name'}}
            ref_count: Reference count, when the source reports one

        Returns:
            ArtistCredit, or None for an empty/missing credit
        """
        if not credits:
            return None

        display = ''
        names = []
        artist_ids = set()
        for credit in credits:
            artist = credit.get('artist')
            if not isinstance(artist, dict):
                artist = {}
            credited_name = next(
                (n for n in (credit.get('name'), artist.get('name')) if isinstance(n, str) and n), ''
            )
            joinphrase = credit.get('joinphrase')
            display += credited_name + (joinphrase if isinstance(joinphrase, str) else '')
            names.append(credited_name)
            artist_ids.add(str(artist.get('id') or credited_name.lower()))

        return cls(
            name=display.strip(),
            artist_count=max(len(artist_ids), 1),
            ref_count=ref_count,
            artist_names=tuple(names)
        )


@dataclass(frozen=True)
class MatchCandidate:
    """A scored catalog match for a raw playback"""
    recording_id: UUID
    release_group_id: UUID
    score: int
    recording_title: str = ''
    release_title: str = ''
    artist_credit: Optional[ArtistCredit] = None


# ============================================================================
# USERS
# ============================================================================

@dataclass
class User:
    id: UUID
    email: Optional[str] = None
    display_name: Optional[str] = None
    is_active: bool = True
    account_locked: bool = False
    is_admin: bool = False

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'User':
        return cls(
            id=_as_uuid(row['id']),
            email=row.get('email'),
            display_name=row.get('display_name'),
            is_active=row.get('is_active', True),
            account_locked=row.get('account_locked', False),
            is_admin=row.get('is_admin', False)
        )


# ============================================================================
# PLAYBACKS
# ============================================================================

@dataclass
class Playback:
    """
    A recorded playback event.

    The raw fields are what the client submitted. recording_id and
    release_group_id are only set once a catalog match was accepted.
    """
    id: UUID
    user_id: UUID
    artists: List[str]
    recording_title: str
    release_title: str
    timestamp: int
    track_length: Optional[int] = None
    play_time: Optional[int] = None
    disc_number: Optional[int] = None
    track_number: Optional[int] = None
    source: Optional[str] = None
    recording_id: Optional[UUID] = None
    release_group_id: Optional[UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def broken(self) -> bool:
        return self.recording_id is None or self.release_group_id is None

    def with_match(self, candidate: MatchCandidate) -> 'Playback':
        return replace(
            self,
            recording_id=candidate.recording_id,
            release_group_id=candidate.release_group_id
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Playback':
        return cls(
            id=_as_uuid(row['id']),
            user_id=_as_uuid(row['user_id']),
            artists=list(row['artists'] or []),
            recording_title=row['recording_title'],
            release_title=row['release_title'],
            timestamp=row['timestamp'],
            track_length=row.get('track_length'),
            play_time=row.get('play_time'),
            disc_number=row.get('disc_number'),
            track_number=row.get('track_number'),
            source=row.get('source'),
            recording_id=_as_uuid(row.get('recording_id')),
            release_group_id=_as_uuid(row.get('release_group_id')),
            created_at=row.get('created_at'),
            updated_at=row.get('updated_at')
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': str(self.id),
            'user_id': str(self.user_id),
            'artists': list(self.artists),
            'recording_title': self.recording_title,
            'release_title': self.release_title,
            'timestamp': self.timestamp,
            'track_length': self.track_length,
            'play_time': self.play_time,
            'disc_number': self.disc_number,
            'track_number': self.track_number,
            'source': self.source,
            'recording_id': str(self.recording_id) if self.recording_id else None,
            'release_group_id': str(self.release_group_id) if self.release_group_id else None,
            'broken': self.broken,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at)
        }


@dataclass
class PlaybackSubmission:
    """Validated payload for creating a playback (or setting now-playing)"""
    artists: List[str]
    recording_title: str
    release_title: str
    track_length: Optional[int] = None
    play_time: Optional[int] = None
    disc_number: Optional[int] = None
    track_number: Optional[int] = None
    timestamp: Optional[int] = None
    source: Optional[str] = None
    id: Optional[UUID] = None

    def __post_init__(self):
        self.artists = _clean_artists(self.artists)
        self.recording_title = _clean_text(self.recording_title, 'recording_title', required=True)
        self.release_title = _clean_text(self.release_title, 'release_title', required=True)
        self.track_length = _clean_int(self.track_length, 'track_length')
        self.play_time = _clean_int(self.play_time, 'play_time')
        self.disc_number = _clean_int(self.disc_number, 'disc_number')
        self.track_number = _clean_int(self.track_number, 'track_number')
        self.timestamp = _clean_int(self.timestamp, 'timestamp')
        self.source = _clean_text(self.source, 'source', required=False)
        self.id = _clean_uuid(self.id, 'id')

    @classmethod
    def from_json(cls, data) -> 'PlaybackSubmission':
        """
        Build a submission from a decoded JSON body

        Raises:
            ValidationError: If the body is not an object or a field is invalid
        """
        if not isinstance(data, dict):
            raise ValidationError('Playback must be a JSON object')
        return cls(
            artists=data.get('artists'),
            recording_title=data.get('recording_title'),
            release_title=data.get('release_title'),
            track_length=data.get('track_length'),
            play_time=data.get('play_time'),
            disc_number=data.get('disc_number'),
            track_number=data.get('track_number'),
            timestamp=data.get('timestamp'),
            source=data.get('source'),
            id=data.get('id')
        )


PATCHABLE_FIELDS = (
    'artists', 'recording_title', 'release_title', 'track_length', 'play_time',
    'disc_number', 'track_number', 'timestamp', 'source'
)
NON_CLEARABLE_FIELDS = ('artists', 'recording_title', 'release_title', 'timestamp')


@dataclass
class PlaybackPatch:
    """
    Partial update of a playback's raw fields.

    A field left at UNSET is not touched. A field set to None is cleared,
    which is only allowed for the optional fields.
    """
    artists: Any = UNSET
    recording_title: Any = UNSET
    release_title: Any = UNSET
    track_length: Any = UNSET
    play_time: Any = UNSET
    disc_number: Any = UNSET
    track_number: Any = UNSET
    timestamp: Any = UNSET
    source: Any = UNSET

    def __post_init__(self):
        for name in PATCHABLE_FIELDS:
            value = getattr(self, name)
            if value is UNSET:
                continue
            if value is None and name in NON_CLEARABLE_FIELDS:
                raise ValidationError(f"'{name}' cannot be cleared")
            setattr(self, name, self._clean(name, value))

    @staticmethod
    def _clean(name: str, value):
        if name == 'artists':
            return _clean_artists(value)
        if name in ('recording_title', 'release_title'):
            return _clean_text(value, name, required=True)
        if name == 'source':
            return _clean_text(value, name, required=False)
        return _clean_int(value, name)

    @classmethod
    def from_json(cls, data) -> 'PlaybackPatch':
        if not isinstance(data, dict):
            raise ValidationError('Patch must be a JSON object')
        unknown = sorted(set(data) - set(PATCHABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Fields cannot be patched: {', '.join(unknown)}")
        return cls(**data)

    def changes(self) -> Dict[str, Any]:
        """Fields explicitly present in the patch, cleared ones included"""
        return {
            name: getattr(self, name)
            for name in PATCHABLE_FIELDS
            if getattr(self, name) is not UNSET
        }

    def is_empty(self) -> bool:
        return not self.changes()

    def apply_to(self, playback: Playback) -> Playback:
        return replace(playback, **self.changes())


@dataclass
class AccumulatedPlayback:
    """Broken playbacks of one user sharing identical raw fields"""
    artists: List[str]
    recording_title: str
    release_title: str
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'artists': list(self.artists),
            'recording_title': self.recording_title,
            'release_title': self.release_title,
            'count': self.count
        }


@dataclass
class NowPlaying:
    """The single, short-lived "currently playing" entry of a user"""
    user_id: UUID
    artists: List[str]
    recording_title: str
    release_title: str
    expires_at: int
    recording_id: Optional[UUID] = None
    release_group_id: Optional[UUID] = None

    @property
    def broken(self) -> bool:
        return self.recording_id is None or self.release_group_id is None

    def is_expired(self, now: float) -> bool:
        return self.expires_at < now

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'NowPlaying':
        return cls(
            user_id=_as_uuid(row['user_id']),
            artists=list(row['artists'] or []),
            recording_title=row['recording_title'],
            release_title=row['release_title'],
            expires_at=row['expires_at'],
            recording_id=_as_uuid(row.get('recording_id')),
            release_group_id=_as_uuid(row.get('release_group_id'))
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'artists': list(self.artists),
            'recording_title': self.recording_title,
            'release_title': self.release_title,
            'expires_at': self.expires_at,
            'recording_id': str(self.recording_id) if self.recording_id else None,
            'release_group_id': str(self.release_group_id) if self.release_group_id else None,
            'broken': self.broken
        }


@dataclass
class BatchResultItem:
    success: bool
    id: Optional[UUID] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'id': str(self.id) if self.id else None,
            'error': self.error
        }


# ============================================================================
# PAGING
# ============================================================================

SORTABLE_FIELDS = ('timestamp', 'created_at', 'recording_title', 'release_title')
SORT_DIRECTIONS = ('asc', 'desc')


@dataclass(frozen=True)
class Pageable:
    """Page number (0-based), page size and a whitelisted sort order"""
    page: int = 0
    size: int = config.DEFAULT_PAGE_SIZE
    sort: str = 'timestamp'
    direction: str = 'desc'

    def __post_init__(self):
        if self.page < 0:
            raise ValidationError("'page' must not be negative")
        if not 1 <= self.size <= config.MAX_PAGE_SIZE:
            raise ValidationError(f"'size' must be between 1 and {config.MAX_PAGE_SIZE}")
        if self.sort not in SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort by '{self.sort}'")
        if self.direction not in SORT_DIRECTIONS:
            raise ValidationError("'direction' must be 'asc' or 'desc'")

    @property
    def offset(self) -> int:
        return self.page * self.size

    @classmethod
    def from_args(cls, args) -> 'Pageable':
        """
        Build from request query args (page, size, sort, direction)

        Size is clamped to 1..MAX_PAGE_SIZE rather than rejected.
        """
        try:
            page = int(args.get('page', 0))
            size = int(args.get('size', config.DEFAULT_PAGE_SIZE))
        except (TypeError, ValueError):
            raise ValidationError("'page' and 'size' must be integers")
        size = max(1, min(size, config.MAX_PAGE_SIZE))
        return cls(
            page=page,
            size=size,
            sort=args.get('sort', 'timestamp'),
            direction=args.get('direction', 'desc').lower()
        )


@dataclass
class Page:
    items: List[Any]
    total: int
    pageable: Pageable

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.pageable.size) if self.total else 0

    @property
    def has_more(self) -> bool:
        return self.pageable.offset + len(self.items) < self.total

    def map(self, fn: Callable[[Any], Any]) -> 'Page':
        return Page([fn(item) for item in self.items], self.total, self.pageable)

    def to_dict(self, serialize: Optional[Callable[[Any], Any]] = None) -> Dict[str, Any]:
        serialize = serialize or (lambda item: item.to_dict())
        return {
            'content': [serialize(item) for item in self.items],
            'page': self.pageable.page,
            'size': self.pageable.size,
            'total_elements': self.total,
            'total_pages': self.total_pages,
            'has_more': self.has_more
        }
