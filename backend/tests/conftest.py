import os
import sys
import pytest

# Ensure the backend root (containing the `app` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from solders.pubkey import Pubkey

from app import create_app, db, socketio
from app.models import Player


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    STAKING_DURATION_MS = 30000
    GAMEPLAY_DURATION_MS = 30000
    WINNER_DECLARATION_DURATION_MS = 10000
    REWARD_PERCENTAGE = 0.9
    REWARD_CURVE = 'geometric'
    CLICK_DEBOUNCE_MS = 0


class FakeClock:
    """Manually driven epoch-millisecond clock."""

    def __init__(self, start=1_700_000_000_000):
        self.t = start

    def __call__(self):
        return self.t

    def advance(self, ms):
        self.t += ms
        return self.t


def new_wallet():
    return str(Pubkey.new_unique())


def seed_player(wallet, staked_amount=0.0, score=0, last_active=None):
    db.session.add(Player(wallet=wallet, staked_amount=staked_amount, score=score, last_active=last_active))
    db.session.commit()


def drive_to(engine, clock, phase):
    """Poll the engine, moving the fake clock one phase at a time, until ``phase`` is current."""
    reading = engine.current_phase().value
    for _ in range(6):
        if reading.phase == phase:
            return reading
        clock.t = reading.end_time
        reading = engine.current_phase().value
    raise AssertionError(f'never reached {phase}')


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import app.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def file_app(tmp_path):
    """App on a file-backed SQLite database, for tests that use several threads."""

    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'round.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {'connect_args': {'timeout': 30, 'check_same_thread': False}}

    application = create_app(FileConfig)
    with application.app_context():
        db.create_all()
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture()
def clock(flask_app):
    fake = FakeClock()
    flask_app.extensions['round_engine'].clock.now = fake
    return fake


@pytest.fixture()
def engine(flask_app, clock):
    return flask_app.extensions['round_engine']


@pytest.fixture()
def events(engine):
    received = []
    engine.notify = lambda event, payload: received.append((event, payload))
    return received


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
    except RuntimeError:
        pass
