from ..extensions import db
from ..services.voice_session import State, VoiceSession
from .base import AccountScopedMixin, TimestampMixin


class VoiceTrainingSession(db.Model, AccountScopedMixin, TimestampMixin):
    # persisted state of a realtime voice training session
    __tablename__ = "voice_sessions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    primary_provider = db.Column(db.String(64), nullable=False)
    secondary_provider = db.Column(db.String(64), nullable=False)
    state = db.Column(db.String(32), nullable=False, default=State.IDLE.value)
    fell_back = db.Column(db.Boolean, nullable=False, default=False)
    end_reason = db.Column(db.String(255))
    transcript = db.Column(db.JSON)  # [{role, text, provider, at}]

    def session(self, on_transition=None) -> VoiceSession:
        return VoiceSession.restore(
            self.primary_provider, self.secondary_provider, self.state or State.IDLE.value,
            fell_back=self.fell_back, end_reason=self.end_reason,
            transcript=self.transcript, on_transition=on_transition,
        )

    def store(self, session: VoiceSession):
        self.state = session.state.value
        self.fell_back = session.fell_back
        self.end_reason = session.end_reason
        self.transcript = session.transcript_entries()

    def to_dict(self):
        s = self.session()
        body = s.to_dict()
        body.update({
            "id": self.id,
            "accountId": self.account_id,
            "userId": self.user_id,
            "primaryProvider": self.primary_provider,
            "secondaryProvider": self.secondary_provider,
            "transcriptText": s.transcript_text(),
        })
        return body

    def __repr__(self) -> str:
        return f"<VoiceTrainingSession id={self.id} state={self.state}>"
