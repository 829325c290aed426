"""
Webhook Service

Records and dispatches inbound webhook deliveries from the payment and
fulfillment gateways.
"""

from typing import Any, Callable, Dict, Mapping, Optional

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.database import db
from src.models.types import utcnow
from src.models.webhook import (
    WebhookEvent, WEBHOOK_FAILED, WEBHOOK_IGNORED, WEBHOOK_PROCESSED, WEBHOOK_RECEIVED)
from src.services import reconciliation
from src.services.metrics import get_metrics_service
from src.services.structured_logging import get_logger

logger = get_logger('waifu.webhooks')

OUTCOME_DUPLICATE = "duplicate"
OUTCOME_UNHANDLED = "unhandled"

Handler = Callable[[Mapping[str, Any]], str]

HANDLERS: Dict[str, Dict[str, Handler]] = {
    "stripe": reconciliation.STRIPE_HANDLERS,
    "printful": reconciliation.PRINTFUL_HANDLERS,
}


def printful_event_id(event: Mapping[str, Any]) -> str:
    """Fulfillment events carry no id of their own; derive a stable one."""
    data = event.get("data") or {}
    order = data.get("order") or {}
    order_key = order.get("id") or order.get("external_id") or ""
    return f"{event.get('type')}:{order_key}:{event.get('created', '')}"


class WebhookService:
    """Service for recording and processing inbound webhooks"""

    def __init__(self, db_session: Optional[Session] = None):
        self.db = db_session or db.session

    def _claim(self, provider: str, event_id: str, event_type: str) -> Optional[WebhookEvent]:
        """Insert the delivery record, or reclaim a failed one. None means duplicate."""
        event = WebhookEvent(
            provider=provider,
            event_id=event_id,
            event_type=event_type,
            status=WEBHOOK_RECEIVED,
            attempts=1,
        )
        self.db.add(event)
        try:
            self.db.commit()
            return event
        except IntegrityError:
            self.db.rollback()

        # Only a failed delivery may run again
        reclaimed = self.db.execute(
            sa.update(WebhookEvent)
            .where(WebhookEvent.provider == provider,
                   WebhookEvent.event_id == event_id,
                   WebhookEvent.status == WEBHOOK_FAILED)
            .values(status=WEBHOOK_RECEIVED, attempts=WebhookEvent.attempts + 1, error=None)
            .execution_options(synchronize_session=False)
        ).rowcount == 1
        self.db.commit()
        if not reclaimed:
            return None
        return self.db.execute(
            sa.select(WebhookEvent).where(WebhookEvent.provider == provider,
                                          WebhookEvent.event_id == event_id)
        ).scalar_one()

    def process(self, provider: str, event_id: str, event_type: str, data: Mapping[str, Any]) -> str:
        """
        Run the handler for one delivery exactly once per (provider, event_id).

        Returns the outcome: processed, ignored, duplicate, unhandled or
        failed. Handler errors are logged and recorded on the event row, never
        raised, so the caller can acknowledge the delivery.
        """
        handler = HANDLERS.get(provider, {}).get(event_type)

        event = self._claim(provider, event_id, event_type)
        if event is None:
            outcome = OUTCOME_DUPLICATE
        elif handler is None:
            event.status = WEBHOOK_IGNORED
            event.processed_at = utcnow()
            self.db.commit()
            outcome = OUTCOME_UNHANDLED
        else:
            event_pk = event.id
            try:
                result = handler(data)
            except Exception as e:
                self.db.rollback()
                logger.exception("Webhook handler failed", provider=provider,
                                 event_id=event_id, event_type=event_type)
                self._finish(event_pk, WEBHOOK_FAILED, error=str(e) or e.__class__.__name__)
                outcome = WEBHOOK_FAILED
            else:
                status = WEBHOOK_IGNORED if result == reconciliation.IGNORED else WEBHOOK_PROCESSED
                self._finish(event_pk, status)
                outcome = status

        metrics = get_metrics_service()
        if metrics:
            metrics.record_webhook(provider, event_type, outcome)
        logger.log_webhook_event(provider, event_type, outcome, event_id=event_id)
        return outcome

    def _finish(self, event_pk: int, status: str, error: Optional[str] = None) -> None:
        self.db.execute(
            sa.update(WebhookEvent)
            .where(WebhookEvent.id == event_pk)
            .values(status=status, error=error, processed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    def get_event(self, provider: str, event_id: str) -> Optional[WebhookEvent]:
        return self.db.execute(
            sa.select(WebhookEvent).where(WebhookEvent.provider == provider,
                                          WebhookEvent.event_id == event_id)
        ).scalar_one_or_none()
