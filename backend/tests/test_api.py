from planning_poker.services import store


def create(client, **overrides):
    body = {'displayName': 'Alice', 'mode': 'strict',
            'backlog': {'features': [{'id': 'f1', 'name': 'Login'}, {'id': 'f2', 'name': 'Search'}]}}
    body.update(overrides)
    return client.post('/api/sessions', json=body)


def test_create_session(client):
    res = create(client)
    assert res.status_code == 201
    data = res.get_json()
    assert len(data['code']) == 6
    assert data['participantId'] == data['session']['facilitatorId']
    assert data['session']['status'] == 'waiting'
    assert [f['id'] for f in data['session']['backlog']] == ['f1', 'f2']


def test_create_session_validation_errors(client):
    res = create(client, displayName='')
    assert res.status_code == 400
    assert res.get_json()['code'] == 'INVALID_NAME'

    res = create(client, mode='median')
    assert res.status_code == 400
    assert res.get_json()['code'] == 'INVALID_MODE'

    res = create(client, backlog={'features': []})
    assert res.status_code == 400
    assert res.get_json()['code'] == 'EMPTY_BACKLOG'

    res = client.post('/api/sessions', data='nope', content_type='text/plain')
    assert res.status_code == 400
    assert res.get_json()['code'] == 'INVALID_PAYLOAD'


def test_get_session_and_progress(client):
    code = create(client).get_json()['code']
    res = client.get(f'/api/sessions/{code.lower()}')
    assert res.status_code == 200
    state = res.get_json()
    assert state['code'] == code
    assert state['participants'][0]['displayName'] == 'Alice'

    res = client.get(f'/api/sessions/{code}/progress')
    assert res.get_json() == {'total': 2, 'completed': 0, 'remaining': 2, 'percentage': 0, 'currentIndex': 0}


def test_unknown_or_malformed_code(client):
    res = client.get('/api/sessions/ZZZZZZ')
    assert res.status_code == 404
    assert res.get_json() == {'error': 'Session not found', 'code': 'NOT_FOUND'}

    res = client.get('/api/sessions/ab-1')
    assert res.status_code == 400
    assert res.get_json()['code'] == 'INVALID_CODE'


def test_list_and_delete_sessions(client):
    first = create(client).get_json()
    create(client, displayName='Bob', mode='average')
    listed = client.get('/api/sessions').get_json()
    assert listed['total'] == 2
    assert {s['mode'] for s in listed['sessions']} == {'strict', 'average'}

    res = client.delete(f"/api/sessions/{first['sessionId']}")
    assert res.status_code == 200
    assert client.get(f"/api/sessions/{first['code']}").status_code == 404
    assert client.delete(f"/api/sessions/{first['sessionId']}").status_code == 404
    assert client.get('/api/sessions').get_json()['total'] == 1


def test_health(client):
    create(client)
    assert client.get('/api/health').get_json() == {'status': 'ok', 'sessions': 1}


def test_snapshot_endpoints(client):
    row = store.save_snapshot('ABC123', {'code': 'ABC123'}).value
    store.save_results('ABC123', {'totalEstimate': 8})

    listed = client.get('/api/snapshots').get_json()
    assert listed['total'] == 1
    assert listed['snapshots'][0]['sessionCode'] == 'ABC123'
    assert 'data' not in listed['snapshots'][0]
    assert client.get('/api/snapshots?kind=results').get_json()['total'] == 1
    assert client.get('/api/snapshots?kind=other').status_code == 400

    detail = client.get(f'/api/snapshots/{row.id}').get_json()
    assert detail['data'] == {'code': 'ABC123'}

    assert client.delete(f'/api/snapshots/{row.id}').status_code == 200
    res = client.get(f'/api/snapshots/{row.id}')
    assert res.status_code == 404
    assert res.get_json()['code'] == 'NOT_FOUND'


def test_clean_snapshots_endpoint(client):
    store.save_snapshot('ABC123', {})
    res = client.post('/api/snapshots/clean', json={'days': 1})
    assert res.get_json() == {'removed': 0, 'olderThanDays': 1}
    assert client.post('/api/snapshots/clean', json={'days': -1}).status_code == 400
    res = client.post('/api/snapshots/clean', json={'days': 0})
    assert res.get_json()['removed'] == 1


def test_clean_snapshots_command(flask_app):
    store.save_snapshot('ABC123', {})
    runner = flask_app.test_cli_runner()
    result = runner.invoke(args=['clean-snapshots', '--days', '0'])
    assert result.exit_code == 0
    assert 'Removed 1 snapshot(s)' in result.output
