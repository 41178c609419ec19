# callcenter/api/voice.py
from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from ..errors import InvalidTransition
from ..extensions import db
from ..models.voice_session import VoiceTrainingSession
from ..utils.decorators import get_scoped_or_404

bp = Blueprint("voice", __name__)


def _log_transition(record_id):
    def log(source, event, target):
        current_app.logger.info('Voice session %s: %s -> %s on %s',
                                record_id, source.value, target.value, event.value)
    return log


@bp.route("/api/voice-sessions", methods=["POST"])
@login_required
def create_session():
    data = request.get_json(silent=True) or {}
    record = VoiceTrainingSession(
        account_id=current_user.account_id,
        user_id=current_user.id,
        primary_provider=data.get('primaryProvider') or current_app.config['VOICE_PRIMARY_PROVIDER'],
        secondary_provider=data.get('secondaryProvider') or current_app.config['VOICE_SECONDARY_PROVIDER'],
        transcript=[],
    )
    db.session.add(record)
    db.session.flush()
    session = record.session(on_transition=_log_transition(record.id))
    session.start()
    record.store(session)
    db.session.commit()
    return jsonify(record.to_dict()), 201


@bp.get("/api/voice-sessions/<int:session_id>")
@login_required
def get_session(session_id):
    record = get_scoped_or_404(VoiceTrainingSession, session_id)
    return jsonify(record.to_dict())


@bp.route("/api/voice-sessions/<int:session_id>/events", methods=["POST"])
@login_required
def post_event(session_id):
    """Feed one connection signal (connect_succeeded, timeout, closed...) to the session."""
    record = get_scoped_or_404(VoiceTrainingSession, session_id)
    data = request.get_json(silent=True) or {}
    session = record.session(on_transition=_log_transition(record.id))
    try:
        session.handle(data.get('event'), data.get('reason'))
    except ValueError:
        return jsonify({"error": f"unknown event: {data.get('event')}"}), 400
    except InvalidTransition as e:
        return jsonify({"error": str(e), "state": session.state.value}), 409
    record.store(session)
    db.session.commit()
    return jsonify(record.to_dict())


@bp.route("/api/voice-sessions/<int:session_id>/transcript", methods=["POST"])
@login_required
def post_transcript(session_id):
    record = get_scoped_or_404(VoiceTrainingSession, session_id)
    data = request.get_json(silent=True) or {}
    session = record.session()
    try:
        entry = session.capture(data.get('role'), data.get('text'))
    except InvalidTransition as e:
        return jsonify({"error": str(e), "state": session.state.value}), 409
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    record.store(session)
    db.session.commit()
    return jsonify({
        "role": entry.role,
        "text": entry.text,
        "provider": entry.provider,
        "entries": len(record.transcript),
    }), 201
