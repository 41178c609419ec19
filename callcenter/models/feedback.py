from ..extensions import db
from .base import AccountScopedMixin, TimestampMixin

class Feedback(db.Model, AccountScopedMixin, TimestampMixin):
    # one row per completed pipeline run; reprocessing inserts a new row
    __tablename__ = "feedback"
    id = db.Column(db.Integer, primary_key=True)
    call_id = db.Column(db.Integer, db.ForeignKey("calls.id"), nullable=False, index=True)
    score = db.Column(db.Integer, nullable=False, default=0)
    positive = db.Column(db.JSON)
    negative = db.Column(db.JSON)
    opportunities = db.Column(db.JSON)
    sentiment = db.Column(db.String(20))  # positive/negative/neutral
    entities = db.Column(db.JSON)
    topics = db.Column(db.JSON)
    behaviors_analysis = db.Column(db.JSON)

    def to_dict(self):
        return {
            "id": self.id,
            "callId": self.call_id,
            "score": self.score,
            "positive": self.positive or [],
            "negative": self.negative or [],
            "opportunities": self.opportunities or [],
            "sentiment": self.sentiment,
            "entities": self.entities or [],
            "topics": self.topics or [],
            "behaviorsAnalysis": self.behaviors_analysis or [],
        }
