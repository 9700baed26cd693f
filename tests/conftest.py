"""
Shared fixtures: an in-memory PlaybackRepository, a scripted catalog lookup,
users and a Flask test client wired to both
"""

import os

# Must be set before auth_utils/db_utils are imported
os.environ['JWT_SECRET'] = 'test-secret'
os.environ['DB_USE_POOLING'] = 'false'

import uuid
from dataclasses import replace
from datetime import datetime, timezone
from uuid import UUID

import pytest

from errors import ConflictError, NotFoundError
from models import AccumulatedPlayback, MatchCandidate, Page, PlaybackSubmission, User
from playback_service import PlaybackService

NOW = 1_700_000_000

T1 = UUID('11111111-1111-4111-8111-111111111111')
R1 = UUID('22222222-2222-4222-8222-222222222222')
T2 = UUID('33333333-3333-4333-8333-333333333333')
R2 = UUID('44444444-4444-4444-8444-444444444444')


class InMemoryPlaybackRepository:
    """PlaybackRepository keeping everything in dicts"""

    def __init__(self):
        self.playbacks = {}
        self.now_playing = {}
        self.update_count = 0

    def insert(self, playback):
        if playback.id in self.playbacks:
            raise ConflictError(f'Playback {playback.id} already exists')
        stamp = datetime.now(timezone.utc)
        stored = replace(playback, artists=list(playback.artists),
                         created_at=stamp, updated_at=stamp)
        self.playbacks[stored.id] = stored
        return replace(stored)

    def find_by_id(self, playback_id):
        playback = self.playbacks.get(playback_id)
        return replace(playback) if playback else None

    def update(self, playback):
        if playback.id not in self.playbacks:
            raise NotFoundError('Playback', playback.id)
        stored = replace(playback, artists=list(playback.artists),
                         updated_at=datetime.now(timezone.utc))
        self.playbacks[stored.id] = stored
        self.update_count += 1
        return replace(stored)

    def delete(self, playback_id):
        return self.playbacks.pop(playback_id, None) is not None

    def _page(self, playbacks, pageable):
        ordered = sorted(playbacks, key=lambda p: str(p.id))
        ordered.sort(key=lambda p: getattr(p, pageable.sort),
                     reverse=pageable.direction == 'desc')
        items = ordered[pageable.offset:pageable.offset + pageable.size]
        return Page([replace(p) for p in items], len(ordered), pageable)

    def find_all(self, pageable):
        return self._page(self.playbacks.values(), pageable)

    def find_for_user(self, user_id, only_broken, pageable):
        playbacks = [
            p for p in self.playbacks.values()
            if p.user_id == user_id and (p.broken or not only_broken)
        ]
        return self._page(playbacks, pageable)

    def find_accumulated_broken(self, user_id, pageable):
        counts = {}
        for p in self.playbacks.values():
            if p.user_id == user_id and p.broken:
                key = (tuple(p.artists), p.recording_title, p.release_title)
                counts[key] = counts.get(key, 0) + 1

        groups = [
            AccumulatedPlayback(list(artists), recording_title, release_title, count)
            for (artists, recording_title, release_title), count in counts.items()
        ]
        groups.sort(key=lambda g: (-g.count, g.recording_title))
        items = groups[pageable.offset:pageable.offset + pageable.size]
        return Page(items, len(groups), pageable)

    def find_broken(self, limit):
        broken = [p for p in self.playbacks.values() if p.broken]
        broken.sort(key=lambda p: p.timestamp, reverse=True)
        return [replace(p) for p in broken[:limit]]

    def find_now_playing(self, user_id):
        return self.now_playing.get(user_id)

    def save_now_playing(self, now_playing):
        self.now_playing[now_playing.user_id] = now_playing
        return now_playing


class ScriptedLookup:
    """PlaybackLookup returning fixed candidates (or raising a fixed error)"""

    def __init__(self, candidates=None, error=None):
        self.candidates = list(candidates or [])
        self.error = error
        self.calls = []

    def identify_playback(self, recording_title, release_title, artists):
        self.calls.append((recording_title, release_title, list(artists)))
        if self.error is not None:
            raise self.error
        return sorted(self.candidates, key=lambda c: c.score, reverse=True)


def user_row(user):
    return {
        'id': user.id,
        'email': user.email,
        'display_name': user.display_name,
        'is_active': user.is_active,
        'account_locked': user.account_locked,
        'is_admin': user.is_admin
    }


@pytest.fixture
def alice():
    return User(id=uuid.uuid4(), email='alice@example.com', display_name='Alice')


@pytest.fixture
def bob():
    return User(id=uuid.uuid4(), email='bob@example.com', display_name='Bob')


@pytest.fixture
def admin():
    return User(id=uuid.uuid4(), email='admin@example.com', display_name='Admin', is_admin=True)


@pytest.fixture
def repository():
    return InMemoryPlaybackRepository()


@pytest.fixture
def lookup():
    return ScriptedLookup()


@pytest.fixture
def service(repository, lookup):
    return PlaybackService(repository, lookup, clock=lambda: NOW)


@pytest.fixture
def make_candidate():
    def _make(score, recording_id=T1, release_group_id=R1):
        return MatchCandidate(
            recording_id=recording_id,
            release_group_id=release_group_id,
            score=score,
            recording_title='Xyz',
            release_title='Abc Live'
        )
    return _make


@pytest.fixture
def submission():
    return PlaybackSubmission(
        artists=['Abc'],
        recording_title='Xyz',
        release_title='Abc Live',
        track_length=215,
        timestamp=NOW - 300
    )


@pytest.fixture
def client(service, alice, bob, admin, monkeypatch):
    """Flask test client; the users above are the only known accounts"""
    import db_utils
    from app import create_app

    users = {str(u.id): user_row(u) for u in (alice, bob, admin)}
    monkeypatch.setattr(db_utils, 'find_user_by_id', lambda user_id: users.get(str(user_id)))

    app = create_app({'PLAYBACK_SERVICE': service, 'TESTING': True})
    return app.test_client()


@pytest.fixture
def auth_header():
    from auth_utils import generate_access_token

    def _header(user):
        return {'Authorization': f'Bearer {generate_access_token(str(user.id))}'}
    return _header
