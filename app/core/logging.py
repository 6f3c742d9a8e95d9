"""
JSON logging for the API and the notification worker.

Every record is one JSON object on stdout. Secrets are masked both in the
message text and in audit ``details``. Request identity (user, company) and
the touched entity travel as ``extra=`` fields, e.g.
``logger.info("...", extra={**ctx.log_extra(), "entity_type": "pir", "entity_id": 7})``.
"""
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Optional

from app.core.config import settings

REDACTED = "***REDACTED***"

# key=value / "key": "value" pairs whose value must never reach the log
_SECRET_IN_TEXT = re.compile(
    r'(password|secret|token|api_key|apikey|authorization|credential)'
    r'[\"\']?\s*[:=]\s*[\"\']?[^\s,;\"\'}{]+',
    re.IGNORECASE,
)

_SECRET_KEYS = frozenset({
    "password", "secret", "secret_key", "api_key", "apikey", "token",
    "access_token", "authorization", "credential", "webhook_secret",
})

CONTEXT_FIELDS = ("user_id", "company_id", "action", "entity_type", "entity_id")

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "rq.worker")


def mask_secrets(value):
    """Copy of ``value`` with secret-looking dict keys masked, at any depth."""
    if isinstance(value, dict):
        return {
            key: REDACTED if str(key).lower() in _SECRET_KEYS else mask_secrets(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [mask_secrets(item) for item in value]
    return value


def mask_text(text: str) -> str:
    return _SECRET_IN_TEXT.sub(rf'\1={REDACTED}', text)


class StructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": mask_text(record.getMessage()),
        }
        entry.update({
            name: getattr(record, name)
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        })
        if record.exc_info:
            entry["exception"] = mask_text(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


def setup_logging():
    """Install the JSON handler on the root logger once per process."""
    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class AuditLogger:
    """Mirrors audit rows to the ``audit`` logger."""

    def __init__(self):
        self.logger = get_logger("audit")

    def log(
        self,
        action: str,
        user_id: Optional[int] = None,
        company_id: Optional[int] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        target = f"{entity_type}:{entity_id}" if entity_type and entity_id else entity_type or "-"
        message = f"AUDIT {action} {target}"
        if details:
            message += f" {json.dumps(mask_secrets(details), default=str, sort_keys=True)}"

        self.logger.info(message, extra={
            "user_id": user_id,
            "company_id": company_id,
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
        })


audit_logger = AuditLogger()
