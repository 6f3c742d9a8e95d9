"""
Background job definitions.
"""
from html import escape
from typing import List

import httpx
from redis import Redis
from rq import Queue

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


def get_queue(name: str = "default") -> Queue:
    """Get RQ queue."""
    redis_conn = Redis.from_url(settings.REDIS_URL)
    return Queue(name, connection=redis_conn)


# ============= RENDERING =============

def _subject(payload: dict) -> str:
    pir = payload["pir"]
    title = pir.get("title") or pir.get("product_name") or f"PIR #{pir['id']}"
    if payload["type"] == "REVIEW_COMPLETED":
        return f"Review completed for {title}: {pir['status_label']}"
    return f"{title} is now {pir['status_label']}"


def _html_body(payload: dict) -> str:
    pir = payload["pir"]
    extra = payload.get("extra") or {}
    parts = [
        f"<p>Product information request <strong>{escape(pir.get('title') or '#' + str(pir['id']))}</strong> "
        f"from {escape(payload['customer']['name'])} to {escape(payload['supplier']['name'])} "
        f"is now <strong>{escape(pir['status_label'])}</strong>.</p>",
    ]
    flagged = extra.get("flagged") or []
    if flagged:
        parts.append("<p>The following answers need changes:</p><ul>")
        for item in flagged:
            parts.append(
                f"<li>{escape(str(item.get('number', '')))} {escape(item.get('question', ''))}: "
                f"{escape(item.get('note', ''))}</li>"
            )
        parts.append("</ul>")
    if extra.get("approved_count") is not None:
        parts.append(f"<p>Approved answers: {extra['approved_count']}</p>")
    return "".join(parts)


def render_notification(payload: dict) -> List[dict]:
    """One e-mail message per recipient, in the shape the sender function expects."""
    subject = _subject(payload)
    body = _html_body(payload)
    return [
        {
            "to": to,
            "subject": subject,
            "html_body": body,
            "from_email": settings.NOTIFICATION_FROM_EMAIL,
            "from_name": settings.NOTIFICATION_FROM_NAME,
        }
        for to in payload.get("recipients") or []
    ]


# ============= JOB FUNCTIONS =============

def send_notification_job(payload: dict):
    """Background job to deliver a PIR notification through the e-mail webhook."""
    messages = render_notification(payload)
    pir_id = payload.get("pir", {}).get("id")
    if not settings.NOTIFICATION_WEBHOOK_URL:
        logger.warning(f"NOTIFICATION_WEBHOOK_URL not set; dropping {len(messages)} message(s) for PIR {pir_id}")
        return 0

    sent = 0
    with httpx.Client(timeout=settings.NOTIFICATION_TIMEOUT) as client:
        for message in messages:
            response = client.post(settings.NOTIFICATION_WEBHOOK_URL, json=message)
            # Non-2xx fails the job so RQ records it
            response.raise_for_status()
            sent += 1
    logger.info(f"Sent {sent} {payload.get('type')} message(s) for PIR {pir_id}")
    return sent


# ============= QUEUE HELPERS =============

def enqueue_notification(payload: dict):
    """Queue notification delivery."""
    queue = get_queue("high")
    return queue.enqueue(send_notification_job, payload)
