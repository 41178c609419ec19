import json

import pytest

from callcenter.errors import AudioUnreachable, InvalidTransition, OpenAIError, TranscriptionFailed
from callcenter.extensions import db
from callcenter.jobs import process_call as job
from callcenter.jobs.process_call import RunContext, is_valid_transcription, run_process_call
from callcenter.models import Behavior, CallRecord, Feedback
from callcenter.services import analysis, transcription
from callcenter.errors import PipelineError


def fake_chat(messages, temperature=0.1, max_tokens=500, json_mode=False, model=None):
    system = messages[0]['content']
    if json_mode and 'Evalúa SOLO este comportamiento' in system:
        return '{"evaluation": "cumple", "comments": "Se presenta"}'
    if json_mode:
        return json.dumps({
            'score': 150, 'positive': ['Presentación clara'], 'negative': ['No indaga necesidades'],
            'opportunities': ['Manejo de objeciones'], 'sentiment': 'negative',
            'entities': ['Laura'], 'topics': ['precio', 'plan'],
        })
    if max_tokens == 50:
        return 'Información de productos'
    return 'La asesora ofrece un plan y el cliente lo rechaza.'


@pytest.fixture
def stages(monkeypatch, segments):
    """Fake every hosted-model call; record status/progress updates."""
    updates = []
    original = job._update

    def spy(call, **kwargs):
        updates.append((kwargs.get('status'), kwargs.get('progress')))
        return original(call, **kwargs)

    monkeypatch.setattr(job, '_update', spy)
    monkeypatch.setattr(transcription, 'transcribe_file',
                        lambda model, *a, **kw: {'text': 'ignored', 'segments': segments})
    monkeypatch.setattr(analysis, 'chat_completion', fake_chat)
    monkeypatch.setattr(analysis, 'create_embedding', lambda text, model=None: [0.1, 0.2, 0.3])
    return updates


def _reload(call_id):
    db.session.expire_all()
    return db.session.get(CallRecord, call_id)


def test_full_run(app, call, stages):
    result = run_process_call(call.id, summary_prompt='Resume brevemente.')
    assert result['success'] is True
    assert result['feedbackScore'] == 100
    assert result['callTopic'] == 'Información de productos'
    assert result['hasEmbedding'] is True
    assert result['usedCustomPrompts'] == {'summary': True, 'feedback': False}
    assert result['transcriptionAvailable'] is True
    assert result['duration'] == 180
    assert result['transcriptStats']['client_lines'] == 3
    assert set(result['processingTime']) == {'total', 'transcription', 'summary', 'topic', 'feedback', 'embedding'}

    assert stages == [('transcribing', 10), ('analyzing', 30), (None, 50), (None, 70)]

    saved = _reload(call.id)
    assert (saved.status, saved.progress) == ('complete', 100)
    assert saved.transcription.startswith('[0:00] Asesor:')
    assert saved.summary == 'La asesora ofrece un plan y el cliente lo rechaza.'
    assert saved.sentiment == 'negative'
    assert saved.topics == ['precio', 'plan']
    assert saved.content_embedding == [0.1, 0.2, 0.3]
    fb = saved.latest_feedback()
    assert fb.score == 100
    assert fb.opportunities == ['Manejo de objeciones']


def test_completed_call_is_not_reprocessed(app, call, stages, monkeypatch):
    call.status = 'complete'
    call.progress = 100
    db.session.commit()
    monkeypatch.setattr(transcription, 'transcribe_file', lambda *a, **kw: pytest.fail('transcribed again'))

    result = run_process_call(call.id)
    assert result['alreadyCompleted'] is True
    assert stages == []
    assert Feedback.query.count() == 0


def test_insufficient_transcript_completes_without_content(app, call, stages, monkeypatch):
    monkeypatch.setattr(transcription, 'transcribe_file', lambda *a, **kw: {
        'segments': [{'start': 0, 'end': 2, 'text': 'Aló, ¿me escucha?'}],
    })
    monkeypatch.setattr(analysis, 'chat_completion', lambda *a, **kw: pytest.fail('no analysis expected'))

    result = run_process_call(call.id)
    assert result['transcriptionAvailable'] is False

    saved = _reload(call.id)
    assert (saved.status, saved.progress) == ('complete', 100)
    assert saved.call_topic == 'Sin contenido analizable'
    assert saved.transcription.startswith('No hay transcripción disponible')
    assert saved.latest_feedback().score == 0


def test_oversized_download_completes_without_content(app, call, stages, monkeypatch):
    monkeypatch.setattr(transcription, 'head_audio', lambda url, timeout=15: (30 * 1024 * 1024, 'audio/mpeg'))
    monkeypatch.setattr(transcription, 'transcribe_file', lambda *a, **kw: pytest.fail('model called'))

    run_process_call(call.id)
    saved = _reload(call.id)
    assert saved.status == 'complete'
    assert 'demasiado grande' in saved.transcription


def test_unreachable_audio_marks_error(app, call, stages, sleeps):
    call.audio_url = 'file:///no/such/dir/llamada.mp3'
    db.session.commit()

    with pytest.raises(AudioUnreachable):
        run_process_call(call.id)
    saved = _reload(call.id)
    assert (saved.status, saved.progress) == ('error', 0)
    assert Feedback.query.count() == 0


def test_transcription_failure_marks_error(app, call, stages, sleeps, monkeypatch):
    def rate_limited(*a, **kw):
        raise OpenAIError('rate limited', status_code=429)

    monkeypatch.setattr(transcription, 'transcribe_file', rate_limited)
    with pytest.raises(TranscriptionFailed):
        run_process_call(call.id)
    saved = _reload(call.id)
    assert (saved.status, saved.progress) == ('error', 0)
    assert stages[0] == ('transcribing', 10)
    assert stages[-1] == ('error', 0)


def test_downstream_failures_degrade(app, call, stages, monkeypatch):
    def down(*a, **kw):
        raise OpenAIError('down', status_code=503)

    monkeypatch.setattr(analysis, 'chat_completion', down)
    monkeypatch.setattr(analysis, 'create_embedding', down)

    result = run_process_call(call.id)
    assert result['feedbackScore'] == 50
    assert result['callTopic'] == 'Consulta general'
    assert result['hasEmbedding'] is False

    saved = _reload(call.id)
    assert saved.status == 'complete'
    assert saved.summary.startswith('Resumen automático: [0:00] Asesor:')
    assert saved.content_embedding is None
    assert saved.latest_feedback().score == 50


def test_rerun_after_error_starts_over(app, call, stages):
    call.status = 'error'
    call.progress = 0
    db.session.commit()

    run_process_call(call.id)
    assert _reload(call.id).status == 'complete'
    assert stages[0] == ('transcribing', 10)


def test_only_active_account_behaviors_are_analyzed(app, call, stages, sleeps):
    mine = Behavior(account_id=call.account_id, name='Saludo', prompt='¿Se presenta?')
    inactive = Behavior(account_id=call.account_id, name='Cierre', prompt='¿Cierra?', is_active=False)
    foreign = Behavior(account_id=call.account_id + 1, name='Ajeno', prompt='x')
    db.session.add_all([mine, inactive, foreign])
    db.session.commit()

    result = run_process_call(call.id, selected_behavior_ids=[mine.id, inactive.id, foreign.id])
    assert result['analyzedBehaviors'] == 3
    fb = _reload(call.id).latest_feedback()
    assert [b['name'] for b in fb.behaviors_analysis] == ['Saludo']


def test_context_account_mismatch_is_rejected(app, call, stages):
    with pytest.raises(PipelineError):
        run_process_call(call.id, context=RunContext(account_id=call.account_id + 1))
    assert stages == []


def test_missing_call(app):
    with pytest.raises(PipelineError):
        run_process_call(9999)


def test_quality_gate():
    assert not is_valid_transcription(None)
    assert not is_valid_transcription('[0:00] Asesor: hola')
    assert not is_valid_transcription('No hay transcripción disponible - ' + 'x' * 200)
    assert not is_valid_transcription('x' * 200)
    assert is_valid_transcription('[0:00] Asesor: ' + 'hola ' * 30)


def test_status_only_moves_forward(app, call):
    call.advance(status='analyzing', progress=30)
    with pytest.raises(InvalidTransition):
        call.advance(status='transcribing')
    call.advance(progress=250)
    assert call.progress == 100
    call.advance(status='error')
    with pytest.raises(InvalidTransition):
        call.advance(status='complete')
    call.reset_for_run()
    assert (call.status, call.progress) == ('pending', 0)


def test_s3_audio_runs_through_the_pipeline(app, call, stages, s3, monkeypatch):
    def no_http(*a, **kw):
        raise AssertionError('s3 audio must not be fetched over HTTP')

    monkeypatch.setattr('callcenter.services.storage.requests.head', no_http)
    monkeypatch.setattr('callcenter.services.storage.requests.get', no_http)

    result = run_process_call(call.id, audio_url='s3://grabaciones/calls/llamada.mp3')
    assert result['success'] is True
    saved = _reload(call.id)
    assert (saved.status, saved.progress) == ('complete', 100)
    assert ('head_object', 'grabaciones', 'calls/llamada.mp3') in s3.calls
    assert ('get_object', 'grabaciones', 'calls/llamada.mp3') in s3.calls
