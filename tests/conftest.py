import json
import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
from pokerleague.app import create_app, db
from pokerleague.models import Role, User, DEFAULT_ROLE_PERMISSIONS, DEFAULT_ROLE_LEVELS


@pytest.fixture
def app(tmp_path, monkeypatch):
    # use temporary SQLite databases for testing
    monkeypatch.setenv("LEAGUE_DB_PATH", str(tmp_path / "test.db"))
    monkeypatch.setenv("LEAGUE_LOG_DB_PATH", str(tmp_path / "test_logs.db"))
    monkeypatch.setenv("LEAGUE_MEDIA_DIR", str(tmp_path / "media"))
    monkeypatch.setenv("LEAGUE_BASE_URL", "http://league.test")
    application = create_app()
    application.config['TESTING'] = True
    with application.app_context():
        db.create_all()
        # set up default roles
        for name, perms in DEFAULT_ROLE_PERMISSIONS.items():
            role = Role(
                name=name,
                permissions=json.dumps(perms),
                level=DEFAULT_ROLE_LEVELS.get(name, 500),
            )
            db.session.add(role)
        db.session.commit()
        yield application
        db.session.remove()


@pytest.fixture
def session(app):
    return db.session


@pytest.fixture
def client(app):
    return app.test_client()


def make_user(session, email, role_name='player', name=None, is_admin=False, password='secret'):
    role = session.query(Role).filter_by(name=role_name).first()
    user = User(email=email, name=name or email.split('@')[0], role=role, is_admin=is_admin)
    user.set_password(password)
    session.add(user)
    session.commit()
    return user


def login(client, email, password='secret'):
    return client.post('/login', data={'email': email, 'password': password})


@pytest.fixture
def director(session, client):
    user = make_user(session, 'td@example.com', role_name='director', name='Tina Director')
    login(client, 'td@example.com')
    return user
