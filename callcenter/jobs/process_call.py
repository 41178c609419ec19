"""Call processing job.

Runs once per uploaded recording: ingestion -> transcription -> summary ->
topic -> feedback -> embedding, persisting each stage's output on the call
record as it goes. Only ingestion and transcription failures abort the run;
every later stage degrades to a fixed fallback value.
"""
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from flask import current_app, has_app_context

from ..extensions import db
from ..errors import PipelineError, TranscriptionFailed
from ..models.behavior import Behavior
from ..models.call import CallRecord
from ..models.feedback import Feedback
from ..services.analysis import (
    FEEDBACK_FALLBACK, NO_CONTENT_FEEDBACK, TOPIC_FALLBACK,
    detect_call_topic, generate_content_embedding, generate_feedback,
    generate_summary, prepare_content_for_embedding, summary_fallback,
)
from ..services.ingestion import check_audio
from ..services.speakers import NO_TRANSCRIPT
from ..services.speaking_metrics import transcript_stats
from ..services.storage import normalize_location
from ..services.transcription import transcribe_audio

NO_CONTENT_TOPIC = 'Sin contenido analizable'


@dataclass
class RunContext:
    """Who asked for the run; replaces ambient auth/account state."""
    account_id: Optional[int] = None
    user_id: Optional[int] = None
    run_config: Dict[str, Any] = field(default_factory=dict)


def is_valid_transcription(transcription: Optional[str]) -> bool:
    return bool(
        transcription
        and NO_TRANSCRIPT not in transcription
        and len(transcription.strip()) > 100
        and ('Asesor:' in transcription or 'Cliente:' in transcription or '[' in transcription)
    )


def _update(call: CallRecord, **kwargs):
    call.advance(**kwargs)
    db.session.add(call)
    db.session.commit()


def _mark_error(call: CallRecord):
    try:
        db.session.rollback()
        if call.can_advance('error'):
            _update(call, status='error', progress=0)
    except Exception:
        current_app.logger.exception('Failed to persist error state for call %s', call.id)


def _load_behaviors(account_id: int, behavior_ids: Optional[List[Any]]) -> List[Behavior]:
    if not behavior_ids:
        return []
    ids = [int(b) for b in behavior_ids]
    return (Behavior.query
            .filter(Behavior.id.in_(ids), Behavior.account_id == account_id, Behavior.is_active.is_(True))
            .order_by(Behavior.id)
            .all())


def _feedback_row(call: CallRecord, fb: Dict[str, Any]) -> Feedback:
    return Feedback(
        account_id=call.account_id,
        call_id=call.id,
        score=fb['score'],
        positive=fb['positive'],
        negative=fb['negative'],
        opportunities=fb['opportunities'],
        sentiment=fb['sentiment'],
        entities=fb['entities'],
        topics=fb['topics'],
        behaviors_analysis=fb.get('behaviors_analysis') or [],
    )


def _elapsed(since: float) -> int:
    return int(round(time.time() - since))


def _finish_without_content(call: CallRecord, transcription: str) -> Dict[str, Any]:
    current_app.logger.info('Invalid or insufficient transcription for call %s, completing with basic feedback', call.id)
    call.advance(
        status='complete', progress=100,
        transcription=transcription, call_topic=NO_CONTENT_TOPIC,
        sentiment='neutral', entities=[], topics=[],
    )
    db.session.add(call)
    db.session.add(_feedback_row(call, dict(NO_CONTENT_FEEDBACK)))
    db.session.commit()
    return {
        'success': True,
        'callId': call.id,
        'accountId': call.account_id,
        'message': 'Call processed - no analyzable content found',
        'transcriptionAvailable': False,
    }


def _run(call: CallRecord, audio_url, summary_prompt, feedback_prompt, selected_behavior_ids):
    log = current_app.logger
    call.reset_for_run()
    db.session.add(call)
    db.session.commit()
    log.info('Processing call %s (%s) in account %s', call.id, call.title, call.account_id)

    # ingestion: a failure here is fatal and nothing else runs
    try:
        url = normalize_location(audio_url or call.audio_url)
        check_audio(url)
    except PipelineError as e:
        log.error('Audio URL validation failed for call %s: %s', call.id, e)
        _mark_error(call)
        raise

    # transcription
    _update(call, status='transcribing', progress=10)
    started = time.time()
    try:
        transcription = transcribe_audio(url)
    except Exception as e:
        log.exception('Transcription failed for call %s', call.id)
        _mark_error(call)
        if isinstance(e, TranscriptionFailed):
            raise
        raise TranscriptionFailed(f'Transcription failed: {e}') from e
    transcription_time = _elapsed(started)
    log.info('Transcription completed in %ss: %s characters', transcription_time, len(transcription or ''))

    if not is_valid_transcription(transcription):
        return _finish_without_content(call, transcription)

    _update(call, status='analyzing', progress=30, transcription=transcription)

    # summary
    t0 = time.time()
    try:
        summary = generate_summary(transcription, summary_prompt or None)
    except Exception:
        log.exception('Error generating summary for call %s', call.id)
        summary = summary_fallback(transcription)
    summary_time = _elapsed(t0)

    # topic
    t0 = time.time()
    try:
        call_topic = detect_call_topic(transcription, summary)
    except Exception:
        log.exception('Error detecting topic for call %s', call.id)
        call_topic = TOPIC_FALLBACK
    topic_time = _elapsed(t0)
    _update(call, progress=50, summary=summary, call_topic=call_topic)

    # feedback
    t0 = time.time()
    behaviors = _load_behaviors(call.account_id, selected_behavior_ids)
    try:
        feedback = generate_feedback(transcription, summary, feedback_prompt or None, behaviors)
    except Exception:
        log.exception('Error generating feedback for call %s', call.id)
        feedback = dict(FEEDBACK_FALLBACK)
    feedback_time = _elapsed(t0)
    log.info('Feedback generated in %ss with score %s', feedback_time, feedback['score'])
    _update(call, progress=70, sentiment=feedback['sentiment'],
            entities=feedback['entities'], topics=feedback['topics'])

    # embedding: never blocks completion
    t0 = time.time()
    content = prepare_content_for_embedding(
        title=call.title, agent_name=call.agent_name or '', summary=summary,
        topics=feedback['topics'], call_topic=call_topic, entities=feedback['entities'],
        transcription=transcription,
    )
    try:
        embedding = generate_content_embedding(content)
    except Exception:
        log.exception('Error generating embedding for call %s', call.id)
        embedding = None
    embedding_time = _elapsed(t0)

    call.advance(status='complete', progress=100, content_embedding=embedding)
    db.session.add(call)
    db.session.add(_feedback_row(call, feedback))
    db.session.commit()

    total_time = _elapsed(started)
    log.info('Processed call %s for account %s in %ss', call.id, call.account_id, total_time)
    return {
        'success': True,
        'callId': call.id,
        'accountId': call.account_id,
        'message': 'Call processed successfully with complete analysis and vectorization',
        'transcriptionLength': len(transcription),
        'summaryLength': len(summary),
        'feedbackScore': feedback['score'],
        'callTopic': call_topic,
        'hasEmbedding': embedding is not None,
        'usedCustomPrompts': {'summary': bool(summary_prompt), 'feedback': bool(feedback_prompt)},
        'analyzedBehaviors': len(selected_behavior_ids or []),
        'transcriptionAvailable': True,
        'duration': call.duration,
        'transcriptStats': transcript_stats(transcription),
        'processingTime': {
            'total': total_time,
            'transcription': transcription_time,
            'summary': summary_time,
            'topic': topic_time,
            'feedback': feedback_time,
            'embedding': embedding_time,
        },
    }


def run_process_call(call_id, audio_url=None, summary_prompt=None, feedback_prompt=None,
                     selected_behavior_ids=None, context: Optional[RunContext] = None) -> Dict[str, Any]:
    """Process one call record; must run inside an app context.

    Raises PipelineError (and leaves the record in 'error') when the run
    cannot produce a transcript.
    """
    call = CallRecord.query.get(int(call_id))
    if call is None:
        raise PipelineError(f'Could not fetch call data for {call_id}')
    if context and context.account_id is not None and context.account_id != call.account_id:
        raise PipelineError(f'Call {call_id} does not belong to account {context.account_id}')

    if call.is_complete:
        current_app.logger.info('Call already completed, skipping processing: %s', call.id)
        return {
            'success': True,
            'callId': call.id,
            'accountId': call.account_id,
            'message': 'Call already completed',
            'alreadyCompleted': True,
        }

    try:
        return _run(call, audio_url, summary_prompt, feedback_prompt, selected_behavior_ids)
    except PipelineError:
        raise
    except Exception:
        # keep the record from getting stuck mid-pipeline
        current_app.logger.exception('Error processing call %s', call.id)
        _mark_error(call)
        raise


def process_call(call_id, audio_url=None, summary_prompt=None, feedback_prompt=None,
                 selected_behavior_ids=None, account_id=None, user_id=None):
    """Public job entrypoint: ensures execution inside Flask app context
    so RQ workers can call this function without requiring the caller to
    set up the app context.
    """
    context = RunContext(account_id=account_id, user_id=user_id)
    kwargs = dict(audio_url=audio_url, summary_prompt=summary_prompt, feedback_prompt=feedback_prompt,
                  selected_behavior_ids=selected_behavior_ids, context=context)
    if has_app_context():
        return run_process_call(call_id, **kwargs)
    # lazy import to avoid circular imports at module import time
    from callcenter import create_app
    app = create_app()
    with app.app_context():
        return run_process_call(call_id, **kwargs)
