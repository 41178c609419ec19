from callcenter.extensions import db
from callcenter.models import Account, User, VoiceTrainingSession


def _auth(user):
    return {'Authorization': f'Bearer {user.api_token}'}


def _event(client, user, sid, event, reason=None):
    return client.post(f'/api/voice-sessions/{sid}/events', headers=_auth(user),
                       json={'event': event, 'reason': reason})


def _say(client, user, sid, role, text):
    return client.post(f'/api/voice-sessions/{sid}/transcript', headers=_auth(user),
                       json={'role': role, 'text': text})


def test_create_starts_on_primary(client, agent):
    r = client.post('/api/voice-sessions', headers=_auth(agent), json={})
    assert r.status_code == 201
    body = r.get_json()
    assert body['state'] == 'connecting_primary'
    assert body['provider'] == 'elevenlabs'
    assert body['secondaryProvider'] == 'openai-realtime'
    assert body['userId'] == agent.id


def test_fallback_keeps_one_transcript(client, agent):
    sid = client.post('/api/voice-sessions', headers=_auth(agent), json={}).get_json()['id']
    assert _event(client, agent, sid, 'connect_succeeded').status_code == 200
    assert _say(client, agent, sid, 'Cliente', 'Hola, quiero cambiar de plan.').status_code == 201

    assert _event(client, agent, sid, 'remote_error', 'socket closed').get_json()['state'] == 'falling_back'
    assert _event(client, agent, sid, 'closed').get_json()['provider'] == 'openai-realtime'
    _event(client, agent, sid, 'connect_succeeded')
    r = _say(client, agent, sid, 'Asesor', 'Claro, le ayudo con eso.')
    assert r.get_json()['provider'] == 'openai-realtime'
    assert r.get_json()['entries'] == 2

    _event(client, agent, sid, 'user_hangup')
    body = _event(client, agent, sid, 'closed').get_json()
    assert body['state'] == 'ended'
    assert body['fellBack'] is True
    assert body['endReason'] == 'user_hangup'
    assert [e['provider'] for e in body['transcript']] == ['elevenlabs', 'openai-realtime']
    assert body['transcriptText'] == 'Cliente: Hola, quiero cambiar de plan.\nAsesor: Claro, le ayudo con eso.'

    db.session.expire_all()
    saved = db.session.get(VoiceTrainingSession, sid)
    assert saved.state == 'ended'
    assert len(saved.transcript) == 2


def test_secondary_failure_ends_session(client, agent):
    sid = client.post('/api/voice-sessions', headers=_auth(agent), json={}).get_json()['id']
    _event(client, agent, sid, 'timeout')
    _event(client, agent, sid, 'closed')
    body = _event(client, agent, sid, 'connect_failed', 'no credentials').get_json()
    assert body['state'] == 'ending'
    assert body['endReason'] == 'no credentials'


def test_illegal_event_is_rejected(client, agent):
    sid = client.post('/api/voice-sessions', headers=_auth(agent), json={}).get_json()['id']
    r = _event(client, agent, sid, 'closed')
    assert r.status_code == 409
    assert r.get_json()['state'] == 'connecting_primary'
    assert _event(client, agent, sid, 'explode').status_code == 400
    assert client.get(f'/api/voice-sessions/{sid}', headers=_auth(agent)).get_json()['state'] == 'connecting_primary'


def test_transcript_needs_live_connection(client, agent):
    sid = client.post('/api/voice-sessions', headers=_auth(agent), json={}).get_json()['id']
    assert _say(client, agent, sid, 'Cliente', 'Hola').status_code == 409
    _event(client, agent, sid, 'connect_succeeded')
    assert _say(client, agent, sid, 'Cliente', '   ').status_code == 400


def test_sessions_are_account_scoped(client, agent):
    other = Account(name='Otra')
    db.session.add(other)
    db.session.commit()
    stranger = User(account_id=other.id, email='otro@example.com', role='agent')
    stranger.set_password('secret')
    stranger.rotate_token()
    db.session.add(stranger)
    db.session.commit()

    sid = client.post('/api/voice-sessions', headers=_auth(agent), json={}).get_json()['id']
    assert client.get(f'/api/voice-sessions/{sid}', headers=_auth(stranger)).status_code == 404
    assert _event(client, stranger, sid, 'connect_succeeded').status_code == 404
    assert client.get(f'/api/voice-sessions/{sid}').status_code == 401
