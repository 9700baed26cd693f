import logging

import pytest

from conftest import NOW, R1, T1
from errors import LookupUnavailableError, ValidationError
from models import PlaybackSubmission
from repair_broken_playbacks import repair_playbacks
from script_base import ScriptBase, run_script


@pytest.fixture
def broken_playbacks(service, alice, bob):
    for user, title in ((alice, 'Xyz'), (bob, 'Uvw')):
        service.create_playback(
            PlaybackSubmission(artists=['Abc'], recording_title=title, release_title='Abc Live',
                               timestamp=NOW),
            80, user
        )


def test_resolves_playbacks_of_all_users(repository, lookup, make_candidate, broken_playbacks):
    lookup.candidates = [make_candidate(95)]

    stats = repair_playbacks(repository, lookup, threshold=80, limit=10)

    assert stats == {'found': 2, 'resolved': 2, 'still_broken': 0, 'errors': 0}
    assert all(p.recording_id == T1 and p.release_group_id == R1
               for p in repository.playbacks.values())


def test_low_scores_stay_broken(repository, lookup, make_candidate, broken_playbacks):
    lookup.candidates = [make_candidate(50)]

    stats = repair_playbacks(repository, lookup, threshold=80, limit=10)

    assert stats['still_broken'] == 2
    assert repository.update_count == 0


def test_dry_run_saves_nothing(repository, lookup, make_candidate, broken_playbacks):
    lookup.candidates = [make_candidate(95)]

    stats = repair_playbacks(repository, lookup, threshold=80, limit=10, dry_run=True)

    assert stats['resolved'] == 2
    assert repository.update_count == 0
    assert all(p.broken for p in repository.playbacks.values())


def test_lookup_failures_are_counted(repository, lookup, broken_playbacks):
    lookup.error = LookupUnavailableError('Catalog lookup timed out')

    stats = repair_playbacks(repository, lookup, threshold=80, limit=10,
                             log=logging.getLogger('repair-test'))

    assert stats == {'found': 2, 'resolved': 0, 'still_broken': 0, 'errors': 2}


def test_limit(repository, lookup, broken_playbacks):
    assert repair_playbacks(repository, lookup, threshold=80, limit=1)['found'] == 1


def test_invalid_threshold(repository, lookup):
    with pytest.raises(ValidationError):
        repair_playbacks(repository, lookup, threshold=150, limit=10)


# ---------------------------------------------------------------------------
# script options
# ---------------------------------------------------------------------------

@pytest.fixture
def script(tmp_path):
    script = ScriptBase('repair_broken_playbacks', 'Re-resolve broken playbacks', log_dir=tmp_path)
    script.add_dry_run_arg()
    script.add_limit_arg()
    script.add_threshold_arg(default=90)
    return script


def test_script_defaults(script):
    args = script.parse_args([])
    assert (args.dry_run, args.limit, args.threshold) == (False, 100, 90)


def test_script_options(script):
    args = script.parse_args(['--dry-run', '--limit', '5', '--threshold', '75'])
    assert (args.dry_run, args.limit, args.threshold) == (True, 5, 75)


@pytest.mark.parametrize('threshold', ['101', '-1', 'high'])
def test_script_rejects_bad_threshold(script, threshold):
    with pytest.raises(SystemExit):
        script.parse_args(['--threshold', threshold])


@pytest.mark.parametrize('result, code', [(True, 0), (False, 1)])
def test_run_script_exit_code(result, code):
    with pytest.raises(SystemExit) as exc_info:
        run_script(lambda: result)
    assert exc_info.value.code == code
