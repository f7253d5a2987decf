"""
Pytest configuration and fixtures

Provides an application on an in-memory SQLite database, one profile per
role, and helpers to log a test client in as one of them.
"""

import pytest

from sitrack import create_app, db
from sitrack.config import TestingConfig
from sitrack.models import Profile

PASSWORD = 'rahasia123'

PROFILES = [
    ('admin', 'Administrator', 'Admin'),
    ('tu', 'Siti Rahmawati', 'TU'),
    ('koor', 'Budi Santoso', 'Koordinator'),
    ('koor2', 'Rina Wulandari', 'Koordinator'),
    ('staff1', 'Andi Pratama', 'Staff'),
    ('staff2', 'Dewi Lestari', 'Staff'),
]


@pytest.fixture
def app(tmp_path):
    app = create_app(TestingConfig)
    app.config['UPLOAD_FOLDER'] = str(tmp_path)
    with app.app_context():
        db.create_all()
        for name, full_name, role in PROFILES:
            profile = Profile(name=name, full_name=full_name, role=role)
            profile.set_password(PASSWORD)
            db.session.add(profile)
        db.session.commit()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    """Push an application context for tests that call the workflow directly."""
    with app.app_context():
        yield app


@pytest.fixture
def profiles(ctx):
    return {p.name: p for p in Profile.query.all()}


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(app):
    """Return a factory producing a test client logged in as ``username``."""
    def _login(username):
        client = app.test_client()
        response = client.post('/login', data={'username': username, 'password': PASSWORD})
        assert response.status_code == 302
        return client
    return _login
