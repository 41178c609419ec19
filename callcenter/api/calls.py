# callcenter/api/calls.py
from datetime import datetime, timezone
from uuid import uuid4

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from ..errors import AudioUnreachable
from ..extensions import db, rq
from ..jobs.process_call import RunContext, process_call, run_process_call
from ..models.call import CallRecord
from ..services.batch import clamp_concurrency
from ..services.storage import resolve_audio_url, save_file
from ..services.transcription import transcribe_audio_batch
from ..utils.decorators import admin_required, get_scoped_or_404, service_token_required

bp = Blueprint("calls", __name__)

ALLOWED_AUDIO_EXT = {'.mp3', '.wav', '.m4a', '.mp4', '.webm', '.ogg', '.flac', '.mpeg', '.mpga'}


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


def _behavior_ids(raw):
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError('selectedBehaviorIds must be a list')
    return [int(b) for b in raw]


@bp.route("/api/process-call", methods=["POST"])
@service_token_required
def process_call_now():
    """Run the whole pipeline for one call inside the request."""
    data = request.get_json(silent=True) or {}
    call_id = data.get('callId')
    if not call_id:
        return jsonify({"error": "callId is required"}), 400
    try:
        behavior_ids = _behavior_ids(data.get('selectedBehaviorIds'))
    except (TypeError, ValueError) as e:
        return jsonify({"error": str(e)}), 400

    try:
        result = run_process_call(
            call_id,
            audio_url=data.get('audioUrl'),
            summary_prompt=data.get('summaryPrompt'),
            feedback_prompt=data.get('feedbackPrompt'),
            selected_behavior_ids=behavior_ids,
            context=RunContext(),
        )
    except Exception as e:
        current_app.logger.exception('Error in process-call for %s', call_id)
        return jsonify({
            "error": "Error interno del servidor",
            "details": str(e),
            "timestamp": _now_iso(),
            "callId": call_id,
        }), 500
    return jsonify(result)


@bp.route("/api/calls", methods=["POST"])
@login_required
def upload_call():
    f = request.files.get('file')
    if not f or not f.filename:
        return jsonify({"error": "file is required"}), 400
    ext = ('.' + f.filename.rsplit('.', 1)[-1].lower()) if '.' in f.filename else ''
    if ext not in ALLOWED_AUDIO_EXT:
        return jsonify({"error": f"unsupported audio type: {ext or '?'}"}), 400

    location = save_file(f, prefix=f"{current_user.account_id}/calls/{uuid4().hex}")
    call = CallRecord(
        account_id=current_user.account_id,
        title=request.form.get('title') or f.filename,
        agent_name=request.form.get('agentName'),
        duration=request.form.get('duration', type=int),
        audio_url=location,
        uploaded_by=current_user.id,
        status='pending',
        progress=0,
    )
    db.session.add(call)
    db.session.commit()
    current_app.logger.info('Uploaded call %s for account %s', call.id, call.account_id)

    if request.form.get('process') in ('1', 'true', 'yes'):
        return _enqueue(call)
    return jsonify(call.to_dict()), 201


@bp.get("/api/calls/<int:call_id>")
@login_required
def get_call(call_id):
    call = get_scoped_or_404(CallRecord, call_id)
    body = call.to_dict()
    try:
        body["playbackUrl"] = resolve_audio_url(call.audio_url)
    except AudioUnreachable:
        body["playbackUrl"] = None
    return jsonify(body)


def _enqueue(call, data=None):
    data = data or {}
    try:
        behavior_ids = _behavior_ids(data.get('selectedBehaviorIds'))
    except (TypeError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
    try:
        job = rq.enqueue(
            process_call, call.id,
            summary_prompt=data.get('summaryPrompt'),
            feedback_prompt=data.get('feedbackPrompt'),
            selected_behavior_ids=behavior_ids,
            account_id=call.account_id,
            user_id=current_user.id,
            job_timeout=1800,
        )
    except Exception as e:
        # synchronous fallback ran the job inline and it failed
        current_app.logger.exception("Inline processing failed for call %s", call.id)
        return jsonify({
            "error": "Error interno del servidor",
            "details": str(e),
            "timestamp": _now_iso(),
            "callId": call.id,
        }), 500
    return jsonify({
        "callId": call.id,
        "status": "queued",
        "jobId": getattr(job, 'id', None),
    }), 202


@bp.route("/api/calls/<int:call_id>/process", methods=["POST"])
@login_required
def enqueue_call(call_id):
    call = get_scoped_or_404(CallRecord, call_id)
    if call.is_complete:
        return jsonify({"callId": call.id, "alreadyCompleted": True}), 200
    return _enqueue(call, request.get_json(silent=True))


@bp.route("/api/transcriptions/batch", methods=["POST"])
@login_required
@admin_required
def batch_transcribe():
    data = request.get_json(silent=True) or {}
    urls = data.get('audioUrls')
    if not isinstance(urls, list) or not urls or not all(isinstance(u, str) for u in urls):
        return jsonify({"error": "audioUrls must be a non-empty list of strings"}), 400
    concurrency = clamp_concurrency(data.get('concurrency', current_app.config.get('BATCH_CONCURRENCY')))
    current_app.logger.info('Batch transcription of %s files with concurrency %s', len(urls), concurrency)

    results = transcribe_audio_batch(urls, concurrency=concurrency)
    ok = sum(1 for r in results if r['ok'])
    return jsonify({
        "total": len(results),
        "succeeded": ok,
        "failed": len(results) - ok,
        "results": results,
    })
