import pytest

from arena import db
from arena.errors import DuplicateSubmission, InvalidInput, NotFound, PersistenceFailure
from arena.models import Contestant
from arena.storage import CompetitionStore, create_competition, end_competition, list_active_competitions
from conftest import add_closed_question


def _score(contestant_id):
    return db.session.get(Contestant, contestant_id).total_score


def test_record_answer_rejects_duplicates(store):
    question = add_closed_question(store)
    alice = store.upsert_contestant('Alice', 1)
    store.record_answer(question['id'], alice['id'], 'B', 5)
    with pytest.raises(DuplicateSubmission):
        store.record_answer(question['id'], alice['id'], 'A', 3)
    assert len(store.list_answers(question['id'])) == 1


def test_record_answer_for_unknown_contestant(store):
    question = add_closed_question(store)
    with pytest.raises(NotFound):
        store.record_answer(question['id'], 9999, 'B', 5)


def test_bulk_regrade_does_not_double_count(store):
    question = add_closed_question(store)
    alice = store.upsert_contestant('Alice', 1)
    answer = store.record_answer(question['id'], alice['id'], 'B', 5)

    store.grade_answers_bulk([answer['id']], True, 10)
    store.grade_answers_bulk([answer['id']], True, 10)
    assert _score(alice['id']) == 10

    store.grade_answer(answer['id'], False, 0)
    assert _score(alice['id']) == 0


def test_grade_unknown_answer_changes_nothing(store):
    question = add_closed_question(store)
    alice = store.upsert_contestant('Alice', 1)
    answer = store.record_answer(question['id'], alice['id'], 'B', 5)
    with pytest.raises(NotFound):
        store.grade_answers_bulk([answer['id'], 424242], True, 10)
    assert store.list_answers(question['id'])[0]['is_correct'] is None
    assert _score(alice['id']) == 0


def test_void_answer_reverses_score(store):
    question = add_closed_question(store)
    alice = store.upsert_contestant('Alice', 1)
    answer = store.record_answer(question['id'], alice['id'], 'B', 5)
    store.grade_answer(answer['id'], True, 10)
    store.void_answer(answer['id'])
    stored = store.list_answers(question['id'])[0]
    assert stored['answer_text'] == ''
    assert stored['points_awarded'] == 0
    assert _score(alice['id']) == 0


def test_leaderboard_order_is_total_and_stable(store):
    bob = store.upsert_contestant('Bob', 2)
    alice = store.upsert_contestant('Alice', 1)
    cara = store.upsert_contestant('Cara', 3)
    dan = store.upsert_contestant('Dan', 4)
    store.increment_score(bob['id'], 10)
    store.increment_score(alice['id'], 10)
    store.increment_score(cara['id'], 20)
    store.set_contestant_status(dan['id'], 'DISQUALIFIED')

    first = [row['name'] for row in store.get_leaderboard()]
    assert first == ['Cara', 'Alice', 'Bob']
    assert [row['name'] for row in store.get_leaderboard()] == first


def test_upsert_reconnects_same_contestant(store):
    first = store.upsert_contestant('Alice', 1, socket_id='a')
    store.set_contestant_status(first['id'], 'OFFLINE')
    again = store.upsert_contestant('Alice', 1, socket_id='b')
    assert again['id'] == first['id']
    assert again['status'] == 'ONLINE'


def test_clear_competition_data_is_scoped(flask_app, store):
    other = CompetitionStore(create_competition('Other')['id'])
    question = add_closed_question(store, shared=True)
    alice = store.upsert_contestant('Alice', 1)
    zed = other.upsert_contestant('Zed', 1)
    store.record_answer(question['id'], alice['id'], 'B', 1)
    other.record_answer(question['id'], zed['id'], 'A', 1)

    store.clear_competition_data()

    assert store.list_contestants() == []
    assert store.list_answers(question['id']) == []
    assert [c['name'] for c in other.list_contestants()] == ['Zed']
    assert len(other.list_answers(question['id'])) == 1


def test_questions_are_scoped_to_competition(store):
    other = CompetitionStore(create_competition('Other')['id'])
    mine = add_closed_question(store, content='Mine')
    shared = add_closed_question(store, content='Shared', shared=True)
    theirs = add_closed_question(other, content='Theirs')

    ids = [q['id'] for q in store.list_active_questions()]
    assert mine['id'] in ids and shared['id'] in ids
    assert theirs['id'] not in ids
    assert store.get_question(theirs['id']) is None


def test_settings_and_session_snapshot(store):
    assert store.get_setting('reveal_progression_mode', 'AUTO') == 'AUTO'
    store.set_setting('reveal_progression_mode', 'MANUAL')
    assert store.get_setting('reveal_progression_mode') == 'MANUAL'

    store.save_session_state('IDLE')
    store.save_session_state('QUESTION_ACTIVE', None)
    assert store.get_session_state()['state'] == 'QUESTION_ACTIVE'


def test_competition_listing(flask_app):
    first = create_competition('One')
    second = create_competition('Two')
    end_competition(first['id'])
    assert [c['id'] for c in list_active_competitions()] == [second['id']]
    with pytest.raises(NotFound):
        end_competition(987654)


def test_database_errors_surface_as_persistence_failure(flask_app, store):
    db.drop_all()
    with pytest.raises(PersistenceFailure):
        store.list_contestants()
    db.create_all()


def test_login_at_occupied_table_takes_over_the_seat(store):
    first = store.upsert_contestant('Alice', 1)
    store.increment_score(first['id'], 10)
    again = store.upsert_contestant('Alicia', 1)
    assert again['id'] == first['id']
    assert again['name'] == 'Alicia'
    assert again['total_score'] == 10
    assert [c['name'] for c in store.list_contestants()] == ['Alicia']


@pytest.mark.parametrize('overrides', [
    {'duration': 0},
    {'duration': -5},
    {'duration': 'soon'},
    {'points': -1},
    {'content': '   '},
    {'type': 'ESSAY'},
])
def test_add_question_rejects_bad_fields(store, overrides):
    with pytest.raises(InvalidInput):
        add_closed_question(store, **overrides)
    assert store.list_active_questions() == []


def test_update_and_deactivate_question(store):
    question = add_closed_question(store)
    updated = store.update_question(question['id'], correct_keys=['C'], category='Capitals', owner='ignored')
    assert updated['correct_keys'] == ['C']
    assert updated['category'] == 'Capitals'
    assert updated['content'] == question['content']

    store.deactivate_question(question['id'])
    assert store.list_active_questions() == []
    assert store.get_question(question['id'])['is_active'] is False
    with pytest.raises(NotFound):
        store.deactivate_question(424242)
