import uuid

import pytest
from psycopg.errors import UniqueViolation

import db_utils
from conftest import R1, T1
from errors import ConflictError, NotFoundError
from models import NowPlaying, Pageable, Playback
from playback_repo import PostgresPlaybackRepository

USER_ID = uuid.uuid4()


def playback_row(**overrides):
    row = {
        'id': str(uuid.uuid4()), 'user_id': str(USER_ID), 'artists': ['Abc'],
        'recording_title': 'Xyz', 'release_title': 'Abc Live', 'track_length': 215,
        'play_time': None, 'disc_number': None, 'track_number': 3, 'timestamp': 1_700_000_000,
        'source': 'player', 'recording_id': None, 'release_group_id': None,
        'created_at': None, 'updated_at': None
    }
    row.update(overrides)
    return row


class FakeDatabase:
    """Records the statements sent through db_utils and answers with canned rows"""

    def __init__(self):
        self.queries = []
        self.updates = []
        self.count = 0
        self.rows = []
        self.row = None
        self.error = None
        self.rowcount = 1

    def execute_query(self, query, params=None, fetch_one=False):
        self.queries.append((query, params, fetch_one))
        if self.error is not None:
            raise self.error
        if 'COUNT(*)' in query and fetch_one:
            return {'count': self.count}
        return self.row if fetch_one else self.rows

    def execute_update(self, query, params=None):
        self.updates.append((query, params))
        return self.rowcount


@pytest.fixture
def db(monkeypatch):
    fake = FakeDatabase()
    monkeypatch.setattr(db_utils, 'execute_query', fake.execute_query)
    monkeypatch.setattr(db_utils, 'execute_update', fake.execute_update)
    return fake


@pytest.fixture
def repo():
    return PostgresPlaybackRepository()


def make_playback(**overrides):
    return Playback.from_row(playback_row(**overrides))


def normalized(query):
    return ' '.join(query.split())


# ---------------------------------------------------------------------------
# insert / update / delete
# ---------------------------------------------------------------------------

def test_insert_sends_columns_in_order(db, repo):
    playback = make_playback(recording_id=str(T1), release_group_id=str(R1))
    db.row = playback_row(id=str(playback.id), recording_id=str(T1), release_group_id=str(R1))

    stored = repo.insert(playback)

    query, params, fetch_one = db.queries[0]
    assert 'INSERT INTO playbacks' in query
    assert fetch_one
    assert params[0] == playback.id
    assert params[1] == USER_ID
    assert params[2].obj == ['Abc']
    assert params[3:11] == ('Xyz', 'Abc Live', 215, None, None, 3, 1_700_000_000, 'player')
    assert params[11:] == (T1, R1)
    assert stored.id == playback.id
    assert not stored.broken


def test_insert_existing_id_is_conflict(db, repo):
    db.error = UniqueViolation('duplicate key value violates unique constraint "playbacks_pkey"')

    with pytest.raises(ConflictError):
        repo.insert(make_playback())


def test_find_by_id(db, repo):
    playback_id = uuid.uuid4()
    db.row = playback_row(id=str(playback_id))

    assert repo.find_by_id(playback_id).id == playback_id
    assert db.queries[0][1] == (playback_id,)

    db.row = None
    assert repo.find_by_id(playback_id) is None


def test_update_sends_id_last(db, repo):
    playback = make_playback(play_time=100)
    db.row = playback_row(id=str(playback.id), play_time=100)

    updated = repo.update(playback)

    query, params, _ = db.queries[0]
    assert 'UPDATE playbacks' in query
    assert params[0].obj == ['Abc']
    assert params[-1] == playback.id
    assert updated.play_time == 100


def test_update_of_vanished_playback_is_not_found(db, repo):
    db.row = None
    with pytest.raises(NotFoundError):
        repo.update(make_playback())


def test_delete_reports_removed_rows(db, repo):
    playback_id = uuid.uuid4()
    assert repo.delete(playback_id) is True
    assert db.updates[0][1] == (playback_id,)

    db.rowcount = 0
    assert repo.delete(playback_id) is False


# ---------------------------------------------------------------------------
# paging
# ---------------------------------------------------------------------------

@pytest.mark.parametrize('sort, direction, expected', [
    ('timestamp', 'desc', 'ORDER BY "timestamp" DESC, id'),
    ('timestamp', 'asc', 'ORDER BY "timestamp" ASC, id'),
    ('recording_title', 'asc', 'ORDER BY recording_title ASC, id'),
    ('created_at', 'desc', 'ORDER BY created_at DESC, id'),
])
def test_find_all_orders_by_pageable(db, repo, sort, direction, expected):
    db.count = 5
    db.rows = [playback_row(), playback_row()]

    page = repo.find_all(Pageable(page=1, size=2, sort=sort, direction=direction))

    count_query, count_params, _ = db.queries[0]
    rows_query, rows_params, _ = db.queries[1]
    assert 'WHERE' not in count_query
    assert count_params is None
    assert expected in normalized(rows_query)
    assert rows_params == (2, 2)
    assert page.total == 5
    assert len(page.items) == 2


def test_find_for_user_filters_by_owner(db, repo):
    repo.find_for_user(USER_ID, False, Pageable(size=10))

    count_query, count_params, _ = db.queries[0]
    rows_query, rows_params, _ = db.queries[1]
    assert 'WHERE user_id = %s' in count_query
    assert 'IS NULL' not in count_query
    assert count_params == (USER_ID,)
    assert rows_params == (USER_ID, 10, 0)


def test_find_for_user_only_broken(db, repo):
    repo.find_for_user(USER_ID, True, Pageable())

    count_query = normalized(db.queries[0][0])
    rows_query = normalized(db.queries[1][0])
    for query in (count_query, rows_query):
        assert 'user_id = %s AND (recording_id IS NULL OR release_group_id IS NULL)' in query


def test_find_accumulated_broken(db, repo):
    db.count = 3
    db.rows = [
        {'artists': ['Abc'], 'recording_title': 'Xyz', 'release_title': 'Abc Live', 'count': 4},
        {'artists': ['Abc'], 'recording_title': 'Uvw', 'release_title': 'Abc Live', 'count': 1},
    ]

    page = repo.find_accumulated_broken(USER_ID, Pageable(page=0, size=2))

    assert page.total == 3
    assert [(item.recording_title, item.count) for item in page.items] == [('Xyz', 4), ('Uvw', 1)]
    assert db.queries[1][1] == (USER_ID, 2, 0)
    assert 'ORDER BY count DESC' in normalized(db.queries[1][0])


def test_find_broken_applies_limit(db, repo):
    db.rows = [playback_row()]
    assert len(repo.find_broken(25)) == 1
    assert db.queries[0][1] == (25,)


# ---------------------------------------------------------------------------
# now playing
# ---------------------------------------------------------------------------

def test_find_now_playing_missing(db, repo):
    db.row = None
    assert repo.find_now_playing(USER_ID) is None


def test_save_now_playing_upserts(db, repo):
    now_playing = NowPlaying(user_id=USER_ID, artists=['Abc'], recording_title='Xyz',
                             release_title='Abc Live', expires_at=1_700_000_200)
    db.row = {'user_id': str(USER_ID), 'artists': ['Abc'], 'recording_title': 'Xyz',
              'release_title': 'Abc Live', 'expires_at': 1_700_000_200,
              'recording_id': None, 'release_group_id': None}

    saved = repo.save_now_playing(now_playing)

    query, params, _ = db.queries[0]
    assert 'ON CONFLICT (user_id) DO UPDATE' in query
    assert params[0] == USER_ID
    assert params[1].obj == ['Abc']
    assert saved.expires_at == 1_700_000_200
    assert saved.broken
