import pytest

from fitlog.healthsync import pushup_sample, samples_for, walk_sample


def test_auto_sync_defaults_off_and_persists(user_client):
    assert user_client.get('/api/health/auto-sync').json() == {'enabled': False}

    response = user_client.put('/api/health/auto-sync', json={'enabled': True})
    assert response.status_code == 200
    assert response.json() == {'enabled': True}
    assert user_client.get('/api/health/auto-sync').json() == {'enabled': True}

    user_client.put('/api/health/auto-sync', json={'enabled': False})
    assert user_client.get('/api/health/auto-sync').json() == {'enabled': False}


def test_auto_sync_requires_boolean(user_client):
    response = user_client.put('/api/health/auto-sync', json={'enabled': 'yes'})
    assert response.status_code == 400


def test_pushup_sample():
    sample = pushup_sample({'count': 10, 'date': '2024-01-01'})
    assert sample == {
        'dataType': 'calories',
        'value': 4,
        'startDate': '2024-01-01T00:00:00',
        'endDate': '2024-01-01T00:00:30',
    }


def test_walk_sample():
    sample = walk_sample({'miles': 1.5, 'date': '2024-01-02T08:00:00'})
    assert sample['dataType'] == 'distance'
    assert sample['value'] == pytest.approx(2414.01)
    assert sample['startDate'] == '2024-01-02T08:00:00'
    assert sample['endDate'] == '2024-01-02T08:30:00'


def test_samples_endpoint_is_oldest_first(user_client):
    user_client.post('/api/walks', json={'miles': 1, 'date': '2024-01-03'})
    user_client.post('/api/pushups', json={'count': 20, 'date': '2024-01-01'})

    samples = user_client.get('/api/health/samples').json()
    assert [s['dataType'] for s in samples] == ['calories', 'distance']
    assert samples_for([], []) == []


def test_oversized_count_never_breaks_samples(user_client):
    rejected = user_client.post('/api/pushups', json={'count': 10**14})
    assert rejected.status_code == 400

    user_client.post('/api/pushups', json={'count': 100000, 'date': '2024-01-01'})
    user_client.post('/api/walks', json={'miles': 1000, 'date': '2024-01-02'})
    response = user_client.get('/api/health/samples')
    assert response.status_code == 200
    assert [s['endDate'] for s in response.json()] == [
        '2024-01-04T11:20:00',
        '2024-01-15T21:20:00',
    ]


def test_sample_end_is_clamped_at_the_end_of_time():
    sample = pushup_sample({'count': 10**14, 'date': '9999-12-31T23:59:00'})
    assert sample['startDate'] == '9999-12-31T23:59:00'
    assert sample['endDate'] == '9999-12-31T23:59:59.999999'

    sample = walk_sample({'miles': 500.0, 'date': '9999-12-31'})
    assert sample['endDate'] == '9999-12-31T23:59:59.999999'
