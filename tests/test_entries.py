import datetime
import sqlite3

import pytest
from fastapi.testclient import TestClient

from conftest import register
from fitlog import server
from fitlog.entries import PUSHUPS, WALKS, EntryValidationError, parse_date, parse_value


def test_create_pushup_keeps_count_and_date(user_client):
    response = user_client.post('/api/pushups', json={'count': 25, 'date': '2024-01-01'})
    assert response.status_code == 200
    entry = response.json()
    assert entry['count'] == 25
    assert entry['date'] == '2024-01-01'
    assert isinstance(entry['id'], int)
    assert entry['userId'] == user_client.get('/api/user').json()['id']


def test_create_pushup_defaults_date_to_now(user_client):
    response = user_client.post('/api/pushups', json={'count': 10})
    assert response.status_code == 200
    assert response.json()['date'].startswith(datetime.date.today().isoformat())


def test_largest_allowed_values_are_stored(user_client):
    assert user_client.post('/api/pushups', json={'count': 100000}).json()['count'] == 100000
    assert user_client.post('/api/walks', json={'miles': 1000}).json()['miles'] == 1000
    too_far = user_client.post('/api/walks', json={'miles': 1000.5})
    assert too_far.status_code == 400
    assert too_far.json() == {'message': 'Invalid miles value'}


def test_numeric_string_count_is_accepted(user_client):
    response = user_client.post('/api/pushups', json={'count': '12'})
    assert response.status_code == 200
    assert response.json()['count'] == 12


@pytest.mark.parametrize('count', [0, -3, 'abc', '', None, True, 2.5, 'nan', 1e20, 10**20, 100001])
def test_invalid_count_is_rejected_without_insert(user_client, count):
    response = user_client.post('/api/pushups', json={'count': count})
    assert response.status_code == 400
    assert response.json() == {'message': 'Invalid count value'}
    assert user_client.get('/api/pushups').json() == []


def test_invalid_date_is_rejected(user_client):
    response = user_client.post('/api/pushups', json={'count': 5, 'date': 'yesterday'})
    assert response.status_code == 400
    assert response.json() == {'message': 'Invalid date value'}


def test_non_object_body_is_rejected(user_client):
    response = user_client.post('/api/pushups', json=[1, 2, 3])
    assert response.status_code == 400
    assert response.json() == {'message': 'Invalid request body'}


def test_list_is_scoped_to_owner(app, user_client):
    user_client.post('/api/pushups', json={'count': 5, 'date': '2024-01-01'})
    user_client.post('/api/pushups', json={'count': 7, 'date': '2024-01-02'})

    with TestClient(app) as other:
        register(other, 'bob')
        other.post('/api/pushups', json={'count': 99, 'date': '2024-01-03'})
        assert [e['count'] for e in other.get('/api/pushups').json()] == [99]

    entries = user_client.get('/api/pushups').json()
    assert [e['count'] for e in entries] == [7, 5]


def test_delete_removes_only_owned_row(app, user_client):
    mine = user_client.post('/api/pushups', json={'count': 5}).json()
    keep = user_client.post('/api/pushups', json={'count': 6}).json()

    with TestClient(app) as other:
        register(other, 'bob')
        response = other.delete(f"/api/pushups/{mine['id']}")
        # someone else's id is a silent no-op
        assert response.status_code == 200
        assert response.json() == {'success': True}
    assert len(user_client.get('/api/pushups').json()) == 2

    response = user_client.delete(f"/api/pushups/{mine['id']}")
    assert response.json() == {'success': True}
    remaining = user_client.get('/api/pushups').json()
    assert [e['id'] for e in remaining] == [keep['id']]


def test_delete_unknown_id_succeeds(user_client):
    response = user_client.delete('/api/walks/12345')
    assert response.status_code == 200
    assert response.json() == {'success': True}


def test_walk_lifecycle(user_client):
    created = user_client.post('/api/walks', json={'miles': 2.5, 'date': '2024-03-04'}).json()
    assert created['miles'] == 2.5
    assert user_client.get('/api/walks').json() == [created]

    bad = user_client.post('/api/walks', json={'miles': 0})
    assert bad.status_code == 400
    assert bad.json() == {'message': 'Invalid miles value'}

    user_client.delete(f"/api/walks/{created['id']}")
    assert user_client.get('/api/walks').json() == []


def test_persistence_error_is_500(user_client, monkeypatch):
    def broken(*args, **kwargs):
        raise sqlite3.OperationalError('database is locked')

    monkeypatch.setattr(server, 'list_entries', broken)
    response = user_client.get('/api/pushups')
    assert response.status_code == 500
    assert response.json() == {'message': 'Failed to fetch pushup entries'}


def test_parse_value_rules():
    assert parse_value(PUSHUPS, 3) == 3
    assert parse_value(PUSHUPS, 3.0) == 3
    assert parse_value(WALKS, '1.75') == 1.75
    with pytest.raises(EntryValidationError):
        parse_value(WALKS, float('inf'))
    with pytest.raises(EntryValidationError):
        parse_value(WALKS, [1])


def test_parse_date_accepts_iso_datetimes():
    assert parse_date('2024-05-06T07:08:09') == '2024-05-06T07:08:09'
    assert parse_date('2024-05-06T07:08:09.000Z') == '2024-05-06T07:08:09.000Z'
    with pytest.raises(EntryValidationError):
        parse_date('2024-13-01')
