import os
import sys
import pytest

# Ensure the backend root (containing the `arena` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from arena import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = 'DEBUG'
    TICK_INTERVAL_SEC = 1.0
    REVEAL_PROGRESSION_MODE = 'AUTO'
    STRICT_TRANSITIONS = False
    DEFAULT_COMPETITION_ID = 1
    SIMILARITY_THRESHOLD = 0.8
    GRADING_STATUS_MESSAGE = 'Adjudicators are reviewing answers...'


class RecordingEmitter:
    """Stands in for socketio.emit and keeps every (event, payload, room)."""

    def __init__(self):
        self.sent = []

    def __call__(self, event, payload, to=None, namespace=None):
        self.sent.append({'event': event, 'payload': payload, 'to': to, 'namespace': namespace})

    def to_room(self, room):
        return [s for s in self.sent if s['to'] == room]

    def events(self, event, room=None):
        return [s['payload'] for s in self.sent if s['event'] == event and (room is None or s['to'] == room)]

    def clear(self):
        self.sent.clear()


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import arena.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def emitter():
    return RecordingEmitter()


@pytest.fixture()
def registry(flask_app, emitter):
    from arena.services.game.broadcaster import Broadcaster
    from arena.services.game.registry import CompetitionRegistry
    return CompetitionRegistry(flask_app, Broadcaster(emit=emitter))


@pytest.fixture()
def competition(flask_app):
    from arena.storage import create_competition
    return create_competition('Quiz Night', contestant_count=4, jury_count=1)


@pytest.fixture()
def store(competition):
    from arena.storage import CompetitionStore
    return CompetitionStore(competition['id'])


@pytest.fixture()
def machine(registry, competition):
    return registry.get_or_create(competition['id'])


def add_closed_question(store, **overrides):
    fields = {
        'content': 'Which city is the capital of Turkey?',
        'type': 'CLOSED_FORM',
        'options': ['A) Istanbul', 'B) Ankara', 'C) Izmir'],
        'correct_keys': ['B'],
        'points': 10,
        'duration': 10,
        'category': 'Geography',
    }
    fields.update(overrides)
    return store.add_question(**fields)


def add_open_question(store, **overrides):
    fields = {
        'content': 'Capital of Turkey?',
        'type': 'OPEN_FORM',
        'correct_keys': ['Ankara'],
        'points': 20,
        'duration': 5,
        'category': 'Geography',
        'media_url': '/media/ankara.jpg',
    }
    fields.update(overrides)
    return store.add_question(**fields)
