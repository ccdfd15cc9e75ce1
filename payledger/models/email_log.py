from datetime import datetime, timezone
from payledger.extensions import db
from payledger.models.types import JSONType

class EmailLog(db.Model):
    __tablename__ = "email_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    to_email = db.Column(db.String(320), nullable=False, index=True)
    template = db.Column(db.String(64), nullable=False)
    subject = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(20), nullable=False, index=True)  # queued|sent|failed
    meta = db.Column(JSONType, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    def __repr__(self) -> str:
        return f"<EmailLog id={self.id} to={self.to_email} template={self.template} status={self.status}>"
