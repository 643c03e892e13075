from arena.storage import CompetitionStore
from conftest import add_closed_question


def test_index(client):
    res = client.get('/')
    assert res.status_code == 200
    assert 'message' in res.get_json()


def test_create_competition(client):
    res = client.post('/api/competitions', json={'name': 'Quiz Night', 'contestant_count': 8, 'jury_count': 2})
    assert res.status_code == 201
    data = res.get_json()
    assert data['name'] == 'Quiz Night'
    assert data['status'] == 'ACTIVE'


def test_create_competition_requires_name(client):
    res = client.post('/api/competitions', json={'name': '  '})
    assert res.status_code == 400


def test_active_list_and_end(client):
    first = client.post('/api/competitions', json={'name': 'One'}).get_json()
    second = client.post('/api/competitions', json={'name': 'Two'}).get_json()

    active = client.get('/api/competitions/active').get_json()
    assert {c['id'] for c in active} == {first['id'], second['id']}
    assert all(c['game_state']['state'] == 'IDLE' for c in active)

    res = client.post(f"/api/competitions/{first['id']}/end")
    assert res.status_code == 200
    assert res.get_json()['status'] == 'ENDED'
    active = client.get('/api/competitions/active').get_json()
    assert [c['id'] for c in active] == [second['id']]


def test_end_unknown_competition(client):
    res = client.post('/api/competitions/987654/end')
    assert res.status_code == 404
    assert res.get_json()['error'] == 'NOT_FOUND'


def test_state_leaderboard_and_questions(client, competition, store):
    question = add_closed_question(store)
    alice = store.upsert_contestant('Alice', 1)
    store.increment_score(alice['id'], 15)

    state = client.get(f"/api/competitions/{competition['id']}/state").get_json()
    assert state['state'] == 'IDLE'
    assert state['current_question'] is None

    board = client.get(f"/api/competitions/{competition['id']}/leaderboard").get_json()
    assert board[0]['name'] == 'Alice'
    assert board[0]['total_score'] == 15

    questions = client.get(f"/api/competitions/{competition['id']}/questions").get_json()
    assert [q['id'] for q in questions] == [question['id']]


def test_stats_reports_live_machines(client, competition):
    client.get(f"/api/competitions/{competition['id']}/state")
    stats = client.get('/api/competitions/stats').get_json()
    assert stats['total_competitions'] == 1
    assert stats['competitions'][0]['competition_id'] == competition['id']


def test_questions_of_other_competition_are_hidden(client, competition):
    other = client.post('/api/competitions', json={'name': 'Other'}).get_json()
    add_closed_question(CompetitionStore(other['id']), content='Theirs')
    questions = client.get(f"/api/competitions/{competition['id']}/questions").get_json()
    assert questions == []


def test_unknown_competition_reads_do_not_create_machines(client, competition):
    client.get(f"/api/competitions/{competition['id']}/state")
    before = client.get('/api/competitions/stats').get_json()['total_competitions']

    for missing in range(900000, 900020):
        assert client.get(f'/api/competitions/{missing}/state').status_code == 404
    assert client.get('/api/competitions/900000/leaderboard').status_code == 404
    assert client.get('/api/competitions/900000/questions').status_code == 404

    after = client.get('/api/competitions/stats').get_json()['total_competitions']
    assert after == before == 1
