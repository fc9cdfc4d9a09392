import os
import sys
import pytest

# Ensure the backend root (containing the `enigma` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from enigma import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret-with-at-least-32-bytes!!')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    BCRYPT_LOG_ROUNDS = 4
    SESSION_TIME_LIMIT_SEC = 7200
    TIME_TOLERANCE_SEC = 60
    SCORE_INCREASE_CEILING = 500
    BASE_SPEED = 200
    CAP_SPEED = 600
    LEADERBOARD_LIMIT = 100
    UPDATE_RATE_LIMIT = 1000
    UPDATE_RATE_WINDOW_SEC = 60
    JWT_EXPIRES_SEC = 3600
    ALLOWED_ORIGINS = ['http://localhost:3000']


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)

    @application.before_request
    def _reset_cached_login_user():
        # The fixture holds one app context across test-client requests, so
        # Flask-Login's per-context user cache in ``g`` must be cleared.
        from flask import g
        g.pop('_login_user', None)

    with application.app_context():
        # Ensure models are imported so tables are created
        import enigma.models  # noqa: F401
        from enigma.services.game import rate_limit
        db.create_all()
        rate_limit.reset()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def make_player(flask_app):
    """Create a user and return ``(user, token)``."""
    from enigma.auth import issue_token
    from enigma.models import User

    def _make(username='alice'):
        user = User(username=username)
        user.set_password('password')
        db.session.add(user)
        db.session.commit()
        return user, issue_token(user)

    return _make


@pytest.fixture()
def player(make_player):
    return make_player('alice')


@pytest.fixture()
def auth_headers(player):
    _, token = player
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture()
def sio_client(flask_app, player):
    _, token = player
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws',
        auth={'token': token},
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass
