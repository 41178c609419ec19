from ..extensions import db
from .base import AccountScopedMixin, TimestampMixin

class Behavior(db.Model, AccountScopedMixin, TimestampMixin):
    """An agent behavior the account wants checked on every processed call."""
    __tablename__ = "behaviors"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    prompt = db.Column(db.Text, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Behavior id={self.id} name={self.name}>"
