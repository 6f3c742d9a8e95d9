"""
PIR notifications.

State changes hand a denormalized snapshot of the PIR to the background queue;
the worker renders and delivers it. Delivery problems never undo the state
change: ``NotificationDispatcher.dispatch`` returns a warning string instead.
"""
from enum import Enum
from typing import Callable, List, Optional

from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging import get_logger
from app.db.models import Company, CompanyUser, PIRRequest
from app.services.pir_lifecycle import PIR_STATUS_DISPLAY
from app.core.security import get_role_value

logger = get_logger(__name__)


class NotificationType(str, Enum):
    PIR_STATUS_UPDATE = "PIR_STATUS_UPDATE"
    REVIEW_COMPLETED = "REVIEW_COMPLETED"


def recipient_emails(db: Session, company: Company) -> List[str]:
    """Company contact e-mail, else the e-mails of its owners and admins."""
    if company.contact_email:
        return [company.contact_email]
    users = db.query(CompanyUser).filter(
        CompanyUser.company_id == company.id,
        CompanyUser.role.in_(["owner", "admin"]),
        CompanyUser.email.isnot(None),
    ).order_by(CompanyUser.id).all()
    return [u.email for u in users]


def _company_snapshot(company: Company) -> dict:
    return {"id": company.id, "name": company.name, "contact_email": company.contact_email}


def build_payload(db: Session, notification_type: NotificationType, pir: PIRRequest,
                  recipient: str = "supplier", extra: Optional[dict] = None) -> dict:
    """Snapshot of ``pir`` for a notification to the ``recipient`` party."""
    target = pir.supplier if recipient == "supplier" else pir.customer
    status = get_role_value(pir.status)
    return {
        "type": NotificationType(notification_type).value,
        "pir": {
            "id": pir.id,
            "title": pir.title,
            "status": status,
            "status_label": PIR_STATUS_DISPLAY.get(pir.status, status),
            "review_round": pir.review_round,
            "product_name": pir.product.name if pir.product else pir.suggested_product_name,
        },
        "customer": _company_snapshot(pir.customer),
        "supplier": _company_snapshot(pir.supplier),
        "recipients": recipient_emails(db, target),
        "extra": extra or {},
    }


class NotificationDispatcher:
    """Queues notification payloads for delivery."""

    def __init__(self, enqueue: Optional[Callable[[dict], object]] = None, enabled: Optional[bool] = None):
        if enqueue is None:
            from app.workers.jobs import enqueue_notification
            enqueue = enqueue_notification
        self._enqueue = enqueue
        self.enabled = settings.NOTIFICATIONS_ENABLED if enabled is None else enabled

    def dispatch(self, payload: dict) -> Optional[str]:
        """Queue ``payload``. Returns None on success or a warning for the user."""
        kind = payload.get("type")
        pir_id = payload.get("pir", {}).get("id")
        if not self.enabled:
            logger.info(f"Notifications disabled; skipped {kind} for PIR {pir_id}")
            return None
        if not payload.get("recipients"):
            logger.warning(f"No recipient for {kind} notification of PIR {pir_id}")
            return "Notification not sent: no contact e-mail on file for the recipient company"
        try:
            self._enqueue(payload)
        except RedisError as e:
            logger.error(f"Failed to queue {kind} notification for PIR {pir_id}: {e}")
            return f"Notification could not be sent: {e}"
        logger.info(f"Queued {kind} notification for PIR {pir_id}")
        return None


def get_notifier() -> NotificationDispatcher:
    """FastAPI dependency; overridden in tests."""
    return NotificationDispatcher()
