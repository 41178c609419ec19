from ..extensions import db
from ..errors import InvalidTransition
from .base import AccountScopedMixin, TimestampMixin

# forward-only order; 'error' can be entered from any non-terminal status
STATUS_ORDER = ['pending', 'transcribing', 'analyzing', 'complete']
STATUS_ERROR = 'error'


class CallRecord(db.Model, AccountScopedMixin, TimestampMixin):
    __tablename__ = "calls"

    id = db.Column(db.Integer, primary_key=True)
    # AccountScopedMixin: account_id
    title = db.Column(db.String(255), nullable=False)
    agent_name = db.Column(db.String(255))
    audio_url = db.Column(db.String(1024), nullable=False)
    duration = db.Column(db.Integer)  # seconds
    uploaded_by = db.Column(db.Integer)  # users.id

    # processing: pending -> transcribing -> analyzing -> complete | error
    status = db.Column(db.String(20), default='pending', nullable=False)
    progress = db.Column(db.Integer, default=0, nullable=False)

    transcription = db.Column(db.Text)
    summary = db.Column(db.Text)
    call_topic = db.Column(db.String(255))
    sentiment = db.Column(db.String(20))
    entities = db.Column(db.JSON)
    topics = db.Column(db.JSON)
    content_embedding = db.Column(db.JSON)  # list[float]

    feedback = db.relationship("Feedback", backref="call", lazy="dynamic",
                               order_by="Feedback.id.desc()")

    @property
    def is_complete(self):
        return self.status == 'complete'

    def can_advance(self, status):
        current = self.status or 'pending'
        if current in ('complete', STATUS_ERROR):
            return False
        if status == STATUS_ERROR:
            return True
        if status not in STATUS_ORDER:
            return False
        return STATUS_ORDER.index(status) >= STATUS_ORDER.index(current)

    def advance(self, status=None, progress=None, **fields):
        """Apply a pipeline update, enforcing the forward-only status order."""
        if status is not None and status != self.status:
            if not self.can_advance(status):
                raise InvalidTransition(f"call {self.id}: {self.status} -> {status}")
            self.status = status
        if progress is not None:
            self.progress = max(0, min(100, int(progress)))
        for k, v in fields.items():
            if not hasattr(self, k):
                raise AttributeError(f"CallRecord has no field {k!r}")
            setattr(self, k, v)

    def reset_for_run(self):
        """Start a fresh run: a retry never resumes a previous one."""
        self.status = 'pending'
        self.progress = 0

    def latest_feedback(self):
        return self.feedback.first()

    def to_dict(self):
        fb = self.latest_feedback()
        return {
            "id": self.id,
            "accountId": self.account_id,
            "title": self.title,
            "agentName": self.agent_name,
            "duration": self.duration,
            "status": self.status,
            "progress": self.progress,
            "summary": self.summary,
            "callTopic": self.call_topic,
            "sentiment": self.sentiment,
            "entities": self.entities or [],
            "topics": self.topics or [],
            "hasEmbedding": bool(self.content_embedding),
            "feedback": fb.to_dict() if fb else None,
        }

    def __repr__(self) -> str:
        return f"<CallRecord id={self.id} status={self.status} progress={self.progress}>"
