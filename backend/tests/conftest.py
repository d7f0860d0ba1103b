import os
import sys
import pytest

# Ensure the backend root (containing the `planning_poker` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from planning_poker import create_app, db, socketio
from planning_poker.services.poker.entities import Feature
from planning_poker.services.poker.reconcile import GameMode
from planning_poker.services.poker.session import PokerSession


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = ['http://localhost:5173']
    LOG_LEVEL = 'DEBUG'
    MIN_PLAYERS = 2
    # Evict abandoned sessions inline so tests stay deterministic
    SESSION_IDLE_GRACE_SEC = 0
    SNAPSHOT_RETENTION_DAYS = 30


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def registry(flask_app):
    return flask_app.extensions['session_registry']


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')


@pytest.fixture()
def make_sio(flask_app):
    """Factory for extra socket clients; all are disconnected at teardown."""
    clients = []

    def _make():
        c = socketio.test_client(flask_app, flask_test_client=flask_app.test_client(), namespace='/ws')
        clients.append(c)
        return c

    yield _make
    for c in clients:
        if c.is_connected('/ws'):
            c.disconnect(namespace='/ws')


def make_features(*names):
    return [Feature(f"f{i + 1}", name) for i, name in enumerate(names)]


def build_session(mode=GameMode.STRICT, players=('Alice', 'Bob', 'Carol'), features=('Login', 'Search'),
                  start=True):
    """A session with `players` joined (the first one facilitates) and a loaded backlog.

    Returns the session and a name -> participant id map.
    """
    session = PokerSession.create(players[0], mode, 'ABC123').value
    ids = {players[0]: session.facilitator_id}
    # Facilitator holds a connection like every other socket-backed participant
    session.facilitator.connection_ref = 'sid-0'
    for i, name in enumerate(players[1:], start=1):
        ids[name] = session.join(name, f"sid-{i}").value.participant.id
    if features:
        session.load_backlog(ids[players[0]], make_features(*features))
    if start:
        assert session.start(ids[players[0]]).ok
    return session, ids
