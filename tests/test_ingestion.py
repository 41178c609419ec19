import pytest
import requests

from callcenter.errors import AudioUnreachable, PayloadTooLarge
from callcenter.services import ingestion, storage
from callcenter.services.ingestion import check_audio
from callcenter.services.storage import MB, head_audio, resolve_audio_url

URL = 'https://cdn.example.com/calls/llamada.mp3'


class FakeResponse:
    def __init__(self, status_code=200, headers=None, reason='OK'):
        self.status_code = status_code
        self.headers = headers or {}
        self.reason = reason

    @property
    def ok(self):
        return self.status_code < 400


def test_check_retries_once(app, monkeypatch, sleeps):
    answers = [requests.exceptions.ConnectTimeout('slow'), (5 * MB, 'audio/mpeg')]

    def fake_head(url, timeout=10):
        a = answers.pop(0)
        if isinstance(a, Exception):
            raise a
        return a

    monkeypatch.setattr(ingestion, 'head_audio', fake_head)
    checked = check_audio(URL)
    assert checked.size_mb == 5.0
    assert checked.content_type == 'audio/mpeg'
    assert sleeps == [2]


def test_check_gives_up_after_second_failure(app, monkeypatch, sleeps):
    def fake_head(url, timeout=10):
        raise requests.exceptions.ConnectionError('refused')

    monkeypatch.setattr(ingestion, 'head_audio', fake_head)
    with pytest.raises(AudioUnreachable):
        check_audio(URL)
    assert sleeps == [2]


def test_check_rejects_over_soft_limit(app, monkeypatch):
    monkeypatch.setattr(ingestion, 'head_audio', lambda url, timeout=10: (150 * MB, 'audio/wav'))
    with pytest.raises(PayloadTooLarge) as exc:
        check_audio(URL)
    assert exc.value.max_mb == 100


def test_check_accepts_unknown_size(app, monkeypatch):
    monkeypatch.setattr(ingestion, 'head_audio', lambda url, timeout=10: (None, None))
    assert check_audio(URL).size_mb is None


def test_head_audio_non_2xx(app, monkeypatch):
    monkeypatch.setattr(storage.requests, 'head', lambda url, **kw: FakeResponse(403, reason='Forbidden'))
    with pytest.raises(AudioUnreachable):
        head_audio(URL)


def test_head_audio_reads_headers(app, monkeypatch):
    seen = {}

    def fake_head(url, **kw):
        seen.update(kw)
        return FakeResponse(headers={'content-length': str(3 * MB), 'content-type': 'audio/mpeg'})

    monkeypatch.setattr(storage.requests, 'head', fake_head)
    assert head_audio(URL, timeout=10) == (3 * MB, 'audio/mpeg')
    assert seen['timeout'] == 10


def test_head_audio_local_file(app, audio_file):
    size, content_type = head_audio(f'file://{audio_file}')
    assert size == audio_file.stat().st_size
    assert content_type == 'audio/mpeg'


def test_resolve_audio_url(app):
    assert resolve_audio_url(' https://x/y.mp3 ') == 'https://x/y.mp3'
    for bad in ('', 'undefined', 'ftp://x/y.mp3'):
        with pytest.raises(AudioUnreachable):
            resolve_audio_url(bad)


def test_head_audio_reads_s3_metadata(app, s3):
    size, content_type = head_audio('s3://grabaciones/calls/llamada.mp3')
    assert (size, content_type) == (4099, 'audio/mpeg')
    assert s3.calls == [('head_object', 'grabaciones', 'calls/llamada.mp3')]


def test_missing_s3_object_is_unreachable(app, s3, sleeps):
    with pytest.raises(AudioUnreachable):
        check_audio('s3://grabaciones/calls/otra.mp3')
    assert [c[0] for c in s3.calls] == ['head_object', 'head_object']
    assert sleeps == [2]


def test_resolve_audio_url_presigns_s3(app, s3):
    url = resolve_audio_url('s3://grabaciones/calls/llamada.mp3')
    assert url.startswith('https://grabaciones.s3.example.com/calls/llamada.mp3')
    assert s3.calls == [('get_object', 'grabaciones', 'calls/llamada.mp3')]
