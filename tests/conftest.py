"""
Pytest fixtures for ballotbox tests.
"""

import pytest

from ballotbox import create_app
from ballotbox.config import TestConfig
from ballotbox.database import create_schema
from ballotbox.extensions import db
from ballotbox.models import Candidate, School, Token


@pytest.fixture
def app():
    """Application with an in-memory database and an active app context."""
    app = create_app(TestConfig)
    with app.app_context():
        create_schema()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def file_app(tmp_path):
    """Application on a file-backed SQLite database, for multi-threaded tests."""

    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'ballotbox-test.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30}}

    app = create_app(FileConfig)
    with app.app_context():
        create_schema()
        db.session.remove()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_token(app):
    """Insert an unused token and return its text."""

    def _make(token: str, school: School = School.PRIMARY) -> str:
        db.session.add(Token(token=token, school=school, used=False))
        db.session.commit()
        return token

    return _make


@pytest.fixture
def make_candidates(app):
    def _make(school: School, *names: str):
        for name in names:
            db.session.add(Candidate(school=school, name=name))
        db.session.commit()

    return _make


@pytest.fixture
def admin_headers(client):
    """Bearer header for the election admin."""
    resp = client.post("/api/auth/login", json={"password": TestConfig.ADMIN_PASSWORD})
    assert resp.status_code == 200, resp.get_json()
    return {"Authorization": f"Bearer {resp.get_json()['access_token']}"}
