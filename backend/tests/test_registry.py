from arena.services.game.registry import REGISTRY_KEY, CompetitionRegistry, get_registry
from arena.services.game.types import LifecycleState
from arena.storage import CompetitionStore, create_competition, end_competition
from conftest import add_closed_question


def test_get_or_create_returns_same_instance(registry, competition):
    first = registry.get_or_create(competition['id'])
    assert registry.get_or_create(competition['id']) is first
    assert competition['id'] in registry
    assert registry.get(424242) is None


def test_app_factory_installs_registry(flask_app):
    assert isinstance(flask_app.extensions[REGISTRY_KEY], CompetitionRegistry)
    assert get_registry() is flask_app.extensions[REGISTRY_KEY]


def test_remove_stops_clock_and_discards(registry, competition):
    store = CompetitionStore(competition['id'])
    question = add_closed_question(store)
    machine = registry.get_or_create(competition['id'])
    machine.start_question(question['id'])
    assert machine.clock.running

    assert registry.remove(competition['id']) is True
    assert not machine.clock.running
    assert competition['id'] not in registry
    assert registry.remove(competition['id']) is False
    assert registry.get_or_create(competition['id']) is not machine


def test_competitions_are_isolated(registry, emitter):
    one = create_competition('One')
    two = create_competition('Two')
    store_one, store_two = CompetitionStore(one['id']), CompetitionStore(two['id'])
    q1 = add_closed_question(store_one, duration=5)
    q2 = add_closed_question(store_two, content='Other', duration=8)
    alice = store_one.upsert_contestant('Alice', 1)
    zed = store_two.upsert_contestant('Zed', 1)

    m1, m2 = registry.get_or_create(one['id']), registry.get_or_create(two['id'])
    m1.start_question(q1['id'])
    m2.start_question(q2['id'])
    m1.tick()
    m1.submit_answer(alice['id'], 'B')
    m2.submit_answer(zed['id'], 'A')
    m1.reset_competition()

    assert m2.state is LifecycleState.QUESTION_ACTIVE
    assert m2.time_remaining == 8
    assert m2.submitted == {zed['id']}
    assert [c['name'] for c in store_two.list_contestants()] == ['Zed']

    rooms_two = {f"{aud}:{two['id']}" for aud in ('moderator', 'contestant', 'adjudicator', 'spectator')}
    events_two = [s for s in emitter.sent if s['to'] in rooms_two]
    assert all(s['event'] not in ('time_sync', 'game_reset') for s in events_two)
    statuses_two = [s['payload'] for s in events_two if s['event'] == 'player_status_update']
    assert {p['contestant_id'] for p in statuses_two} == {zed['id']}


def test_list_active_merges_storage_and_memory(registry):
    live = create_competition('Live')
    ended = create_competition('Ended')
    end_competition(ended['id'])
    question = add_closed_question(CompetitionStore(live['id']))
    registry.get_or_create(live['id']).start_question(question['id'])

    active = registry.list_active()
    assert [c['id'] for c in active] == [live['id']]
    assert active[0]['name'] == 'Live'
    assert active[0]['game_state']['state'] == 'QUESTION_ACTIVE'
    assert active[0]['game_state']['current_question']['id'] == question['id']

    stats = registry.stats()
    assert stats['total_competitions'] == 1
