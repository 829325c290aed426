"""
Webhook Models

Every inbound webhook delivery is recorded once per (provider, event_id);
the row doubles as the duplicate-delivery guard and the audit trail for
the reconciliation sweep.
"""

from src.database import db
from src.models.types import iso, utcnow

WEBHOOK_RECEIVED = "received"
WEBHOOK_PROCESSED = "processed"
WEBHOOK_IGNORED = "ignored"
WEBHOOK_FAILED = "failed"


class WebhookEvent(db.Model):
    """A webhook delivery from the payment or fulfillment gateway"""
    __tablename__ = "webhook_events"
    __table_args__ = (
        db.UniqueConstraint("provider", "event_id", name="uq_webhook_provider_event"),
    )

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(20), nullable=False)  # stripe | printful
    event_id = db.Column(db.String(128), nullable=False)
    event_type = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), default=WEBHOOK_RECEIVED, nullable=False)
    attempts = db.Column(db.Integer, default=0, nullable=False)
    error = db.Column(db.Text, nullable=True)
    received_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    processed_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self):
        return f"<WebhookEvent {self.provider}:{self.event_id} {self.status}>"

    def to_dict(self):
        return {
            "provider": self.provider,
            "event_id": self.event_id,
            "event_type": self.event_type,
            "status": self.status,
            "attempts": self.attempts,
            "error": self.error,
            "received_at": iso(self.received_at),
            "processed_at": iso(self.processed_at),
        }
