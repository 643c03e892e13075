from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

DEMO_QUESTIONS = [
    {
        'content': 'Which city is the capital of Turkey?',
        'type': 'CLOSED_FORM',
        'options': ['A) Istanbul', 'B) Ankara', 'C) Izmir', 'D) Bursa'],
        'correct_keys': ['B'],
        'points': 10,
        'duration': 20,
        'category': 'Geography',
    },
    {
        'content': 'How many sides does a hexagon have?',
        'type': 'CLOSED_FORM',
        'options': ['A) 5', 'B) 6', 'C) 7', 'D) 8'],
        'correct_keys': ['B'],
        'points': 10,
        'duration': 15,
        'category': 'Mathematics',
    },
    {
        'content': 'Which city was formerly known as Constantinople?',
        'type': 'OPEN_FORM',
        'correct_keys': ['Istanbul'],
        'points': 20,
        'duration': 30,
        'category': 'History',
    },
    {
        'content': 'Name the chemical element with the symbol Fe.',
        'type': 'OPEN_FORM',
        'correct_keys': ['Iron'],
        'points': 15,
        'duration': 25,
        'category': 'Science',
    },
]

DEMO_QUOTES = [
    ('Knowledge is power.', 'Francis Bacon'),
    ('The more I learn, the more I realize how much I do not know.', 'Albert Einstein'),
    ('An investment in knowledge pays the best interest.', 'Benjamin Franklin'),
]


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # One registry per app; each competition gets its own state machine inside it
    from arena.services.game.broadcaster import Broadcaster
    from arena.services.game.registry import REGISTRY_KEY, CompetitionRegistry
    flask_app.extensions[REGISTRY_KEY] = CompetitionRegistry(flask_app, Broadcaster())

    # Import and register blueprints here
    from arena.main import main
    flask_app.register_blueprint(main)

    from arena.api.competitions import competitions
    flask_app.register_blueprint(competitions, url_prefix='/api/competitions')

    # Register Socket.IO event handlers
    from arena.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('seed-demo')
    def seed_demo_command():
        """Drops, recreates, and seeds the database with a demo competition."""
        from arena.models import Quote
        from arena.storage import CompetitionStore, create_competition
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            competition = create_competition('Demo Night', contestant_count=10, jury_count=2)
            store = CompetitionStore(competition['id'])
            for position, question in enumerate(DEMO_QUESTIONS, start=1):
                store.add_question(order_index=position, **question)
            for text, author in DEMO_QUOTES:
                db.session.add(Quote(text=text, author=author))
            db.session.commit()
            store.set_setting('reveal_progression_mode', 'AUTO', 'AUTO or MANUAL reveal pacing')
            print(f"Database has been reset and seeded! competition={competition['id']}")

    flask_app.cli.add_command(seed_demo_command)

    return flask_app
