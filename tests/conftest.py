import pytest
from fastapi.testclient import TestClient

from fitlog.config import Settings
from fitlog.server import create_app


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_path=str(tmp_path / 'test.db'),
        gemini_api_key='test-key',
        session_secret='test-secret',
        upload_dir=str(tmp_path / 'uploads'),
        max_concurrent_transcodes=2,
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def register(client, username='alice', password='secret-pw'):
    response = client.post('/api/register', json={'username': username, 'password': password})
    assert response.status_code == 200, response.text
    return response.json()


@pytest.fixture
def user_client(client):
    register(client)
    return client
