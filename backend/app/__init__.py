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

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Import and register blueprints here
    from app.main import main
    flask_app.register_blueprint(main)

    from app.api.round import round_api
    flask_app.register_blueprint(round_api, url_prefix='/api/game')

    from app.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    # One engine per app; request handlers reach it through app.extensions
    from app.services.round import build_engine
    flask_app.extensions['round_engine'] = build_engine(flask_app.config, notify=_broadcast)

    from app.services.round.ticker import start_phase_ticker
    start_phase_ticker(flask_app)

    @click.command('round-reset')
    def round_reset_command():
        """Drops, recreates, and seeds the round tables."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            reading = flask_app.extensions['round_engine'].current_phase()
            print(f'Round tables reset; phase={reading.value.phase.value if reading.succeeded else "unknown"}')

    flask_app.cli.add_command(round_reset_command)

    return flask_app


def _broadcast(event, payload):
    socketio.emit(event, payload, to='round', namespace='/ws')
