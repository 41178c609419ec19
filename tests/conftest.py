import copy
import io
import os
import sys
import time

import pytest
from botocore.exceptions import ClientError
from flask import g

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from callcenter import create_app
from callcenter.extensions import db
from callcenter.models import Account, CallRecord, User

SEGMENTS = [
    {'start': 0.0, 'end': 4.0, 'no_speech_prob': 0.01,
     'text': 'Buenos días, mi nombre es Laura y me comunico de la empresa.'},
    {'start': 4.5, 'end': 6.0, 'no_speech_prob': 0.02, 'text': '¿Cuánto cuesta el plan?'},
    {'start': 6.5, 'end': 12.0, 'no_speech_prob': 0.01,
     'text': 'Nuestro plan tiene una promoción con instalación incluida este mes.'},
    # background murmur the model hallucinated; dropped by no_speech_prob
    {'start': 12.5, 'end': 13.0, 'no_speech_prob': 0.8, 'text': 'mmm sí claro'},
    {'start': 15.0, 'end': 17.0, 'no_speech_prob': 0.05, 'text': 'No me interesa, ya tengo otro servicio.'},
    {'start': 17.5, 'end': 19.0, 'no_speech_prob': 0.03, 'text': 'Entiendo, muchas gracias por su tiempo.'},
]

EXPECTED_TRANSCRIPT = (
    '[0:00] Asesor: Buenos días, mi nombre es Laura y me comunico de la empresa.\n'
    '[0:04] Cliente: ¿Cuánto cuesta el plan?\n'
    '[0:06] Asesor: Nuestro plan tiene una promoción con instalación incluida este mes.\n'
    '[0:12] Silencio: 3 segundos de pausa\n'
    '[0:15] Cliente: No me interesa, ya tengo otro servicio.\n'
    '[0:17] Cliente: Entiendo, muchas gracias por su tiempo.\n'
)


@pytest.fixture
def segments():
    return copy.deepcopy(SEGMENTS)


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'RQ_SYNC': True,
        'OPENAI_API_KEY': 'test-key',
        'PROCESS_CALL_TOKEN': None,
        'STORAGE_BACKEND': 'local',
        'LOCAL_STORAGE_DIR': str(tmp_path / 'storage'),
        'TRANSCRIPTION_MODELS': ['gpt-4o-mini-transcribe', 'gpt-4o-transcribe', 'whisper-1'],
    })

    # The app context below outlives each test-client request, so Flask reuses
    # its `g`; drop Flask-Login's cached user so every request authenticates anew.
    @app.before_request
    def _reset_login_cache():
        g.pop('_login_user', None)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def sleeps(monkeypatch):
    """Record every time.sleep instead of waiting."""
    calls = []
    monkeypatch.setattr(time, 'sleep', calls.append)
    monkeypatch.setattr('callcenter.services.transcription.random.uniform', lambda a, b: 0)
    return calls


@pytest.fixture
def account(app):
    acc = Account(name='Acme Telecom')
    db.session.add(acc)
    db.session.commit()
    return acc


def _user(account, email, role):
    u = User(account_id=account.id, email=email, role=role)
    u.set_password('secret')
    u.rotate_token()
    db.session.add(u)
    db.session.commit()
    return u


@pytest.fixture
def agent(account):
    return _user(account, 'agent@example.com', 'agent')


@pytest.fixture
def admin(account):
    return _user(account, 'admin@example.com', 'admin')


@pytest.fixture
def audio_file(tmp_path):
    p = tmp_path / 'llamada.mp3'
    p.write_bytes(b'ID3' + b'\x00' * 4096)
    return p


@pytest.fixture
def call(account, audio_file):
    c = CallRecord(
        account_id=account.id,
        title='Llamada de prueba',
        agent_name='Laura',
        audio_url=f'file://{audio_file}',
        duration=180,
    )
    db.session.add(c)
    db.session.commit()
    return c


class FakeS3:
    """In-memory stand-in for the boto3 S3 client."""

    def __init__(self, objects=None):
        self.objects = dict(objects or {})
        self.calls = []

    def _missing(self, op):
        return ClientError({'Error': {'Code': '404', 'Message': 'Not Found'}}, op)

    def head_object(self, Bucket, Key):
        self.calls.append(('head_object', Bucket, Key))
        if (Bucket, Key) not in self.objects:
            raise self._missing('HeadObject')
        return {'ContentLength': len(self.objects[(Bucket, Key)]), 'ContentType': 'audio/mpeg'}

    def get_object(self, Bucket, Key):
        self.calls.append(('get_object', Bucket, Key))
        if (Bucket, Key) not in self.objects:
            raise self._missing('GetObject')
        return {'Body': io.BytesIO(self.objects[(Bucket, Key)])}

    def generate_presigned_url(self, op, Params, ExpiresIn):
        self.calls.append((op, Params['Bucket'], Params['Key']))
        return f"https://{Params['Bucket']}.s3.example.com/{Params['Key']}?X-Amz-Expires={ExpiresIn}"


@pytest.fixture
def s3(monkeypatch):
    from callcenter.services import storage
    fake = FakeS3({('grabaciones', 'calls/llamada.mp3'): b'ID3' + b'\x00' * 4096})
    monkeypatch.setattr(storage, '_s3_client', lambda: fake)
    return fake
