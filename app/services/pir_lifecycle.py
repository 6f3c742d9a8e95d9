"""
PIR lifecycle state machine.

Request status flow:
    draft -> sent -> in_progress -> submitted -> in_review -> approved
                                                          \-> flagged -> submitted (next round)
                                                          \-> rejected

``approved`` locks the request and every response; ``approved``,
``rejected`` and ``canceled`` are terminal.
"""
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional

from sqlalchemy.orm import Session

from app.core.errors import AccessDeniedError, LockedError, NotFoundError, TransitionError
from app.core.logging import get_logger
from app.core.security import get_role_value
from app.db.models import PIRRequest, PIRResponse, PIRStatus, ResponseStatus

logger = get_logger(__name__)


PIR_STATUS_TRANSITIONS: Dict[PIRStatus, FrozenSet[PIRStatus]] = {
    PIRStatus.DRAFT: frozenset({PIRStatus.SENT, PIRStatus.SUBMITTED, PIRStatus.CANCELED}),
    PIRStatus.SENT: frozenset({PIRStatus.IN_PROGRESS, PIRStatus.SUBMITTED, PIRStatus.CANCELED}),
    PIRStatus.IN_PROGRESS: frozenset({PIRStatus.SUBMITTED, PIRStatus.CANCELED}),
    PIRStatus.SUBMITTED: frozenset({PIRStatus.IN_REVIEW, PIRStatus.CANCELED}),
    PIRStatus.RESUBMITTED: frozenset({PIRStatus.IN_REVIEW, PIRStatus.CANCELED}),
    PIRStatus.IN_REVIEW: frozenset({
        PIRStatus.APPROVED, PIRStatus.FLAGGED, PIRStatus.REJECTED, PIRStatus.CANCELED,
    }),
    PIRStatus.FLAGGED: frozenset({
        PIRStatus.SUBMITTED, PIRStatus.RESUBMITTED, PIRStatus.IN_REVIEW, PIRStatus.CANCELED,
    }),
    PIRStatus.APPROVED: frozenset(),
    PIRStatus.REJECTED: frozenset(),
    PIRStatus.CANCELED: frozenset(),
}

RESPONSE_STATUS_TRANSITIONS: Dict[ResponseStatus, FrozenSet[ResponseStatus]] = {
    ResponseStatus.DRAFT: frozenset({ResponseStatus.SUBMITTED}),
    ResponseStatus.SUBMITTED: frozenset({ResponseStatus.APPROVED, ResponseStatus.FLAGGED}),
    ResponseStatus.FLAGGED: frozenset({ResponseStatus.SUBMITTED, ResponseStatus.APPROVED}),
    ResponseStatus.APPROVED: frozenset(),
}

PIR_STATUS_DISPLAY = {
    PIRStatus.DRAFT: "Draft",
    PIRStatus.SENT: "Sent",
    PIRStatus.IN_PROGRESS: "In Progress",
    PIRStatus.SUBMITTED: "Submitted",
    PIRStatus.IN_REVIEW: "In Review",
    PIRStatus.FLAGGED: "Changes Requested",
    PIRStatus.APPROVED: "Approved",
    PIRStatus.REJECTED: "Rejected",
    PIRStatus.RESUBMITTED: "Resubmitted",
    PIRStatus.CANCELED: "Canceled",
}

TERMINAL_STATUSES = frozenset(s for s, targets in PIR_STATUS_TRANSITIONS.items() if not targets)
SUPPLIER_EDITABLE_STATUSES = frozenset({
    PIRStatus.DRAFT, PIRStatus.SENT, PIRStatus.IN_PROGRESS, PIRStatus.FLAGGED,
})
REVIEWABLE_STATUSES = frozenset({
    PIRStatus.SUBMITTED, PIRStatus.RESUBMITTED, PIRStatus.FLAGGED, PIRStatus.IN_REVIEW,
})


def _now() -> datetime:
    return datetime.now(timezone.utc)


def get_accessible_pir(db: Session, pir_id: int, ctx, side: Optional[str] = None) -> PIRRequest:
    """
    Load a PIR visible to ``ctx``'s company.

    ``side`` narrows access to the ``"customer"`` or ``"supplier"`` party.
    PIRs of unrelated companies are reported as not found.
    """
    pir = db.query(PIRRequest).filter(PIRRequest.id == pir_id).first()
    if pir is None or ctx.company_id not in (pir.customer_id, pir.supplier_company_id):
        raise NotFoundError(f"PIR {pir_id} not found")
    if side == "customer" and ctx.company_id != pir.customer_id:
        raise AccessDeniedError("Only the requesting customer can do this")
    if side == "supplier" and ctx.company_id != pir.supplier_company_id:
        raise AccessDeniedError("Only the supplier can do this")
    return pir


def is_valid_transition(current, target) -> bool:
    return PIRStatus(target) in PIR_STATUS_TRANSITIONS[PIRStatus(current)]


def is_valid_response_transition(current, target) -> bool:
    return ResponseStatus(target) in RESPONSE_STATUS_TRANSITIONS[ResponseStatus(current)]


def is_locked(pir: PIRRequest) -> bool:
    """Approved requests are read-only. Derived, never stored."""
    return PIRStatus(pir.status) == PIRStatus.APPROVED


def is_later_round(pir: PIRRequest) -> bool:
    """True when an earlier review round of this request was already completed."""
    completed = pir.review_round or 0
    if PIRStatus(pir.status) == PIRStatus.IN_REVIEW:
        # The round in progress is counted already
        completed -= 1
    return completed >= 1


def ensure_not_locked(pir: PIRRequest):
    if is_locked(pir):
        raise LockedError(f"PIR {pir.id} is approved and can no longer be changed")


def transition(pir: PIRRequest, target: PIRStatus) -> PIRStatus:
    """Move ``pir`` to ``target`` or raise ``TransitionError``. Returns the previous status."""
    current = PIRStatus(pir.status)
    target = PIRStatus(target)
    ensure_not_locked(pir)
    if target not in PIR_STATUS_TRANSITIONS[current]:
        raise TransitionError(
            f"Cannot move PIR {pir.id} from '{current.value}' to '{target.value}'",
            current=current.value,
            requested=target.value,
        )
    pir.status = target
    pir.updated_at = _now()
    logger.info(f"PIR {pir.id} status {current.value} -> {target.value}")
    return current


def transition_response(response: PIRResponse, target: ResponseStatus):
    current = ResponseStatus(response.status)
    target = ResponseStatus(target)
    if current == target:
        return
    if target not in RESPONSE_STATUS_TRANSITIONS[current]:
        raise TransitionError(
            f"Cannot move response {response.id} from '{current.value}' to '{target.value}'",
            current=current.value,
            requested=target.value,
        )
    response.status = target


def ensure_editable_by_supplier(pir: PIRRequest):
    """Suppliers edit answers only while the request is with them."""
    ensure_not_locked(pir)
    status = PIRStatus(pir.status)
    if status not in SUPPLIER_EDITABLE_STATUSES:
        raise TransitionError(
            f"Answers cannot be edited while the PIR is '{status.value}'",
            current=status.value,
        )


def mark_in_progress(pir: PIRRequest):
    """First supplier edit on a sent request."""
    if PIRStatus(pir.status) == PIRStatus.SENT:
        transition(pir, PIRStatus.IN_PROGRESS)


def send_pir(pir: PIRRequest):
    transition(pir, PIRStatus.SENT)


def cancel_pir(pir: PIRRequest):
    transition(pir, PIRStatus.CANCELED)


def reject_pir(pir: PIRRequest):
    if PIRStatus(pir.status) != PIRStatus.IN_REVIEW:
        raise TransitionError(
            f"Only a PIR in review can be rejected (current status '{get_role_value(pir.status)}')",
            current=get_role_value(pir.status),
            requested=PIRStatus.REJECTED.value,
        )
    transition(pir, PIRStatus.REJECTED)


def submit_pir(db: Session, pir: PIRRequest) -> List[PIRResponse]:
    """
    Supplier submission (or resubmission after flags).

    Draft and flagged responses become submitted; approved responses keep
    their status. Partial answers are allowed. Returns the responses that
    changed status.
    """
    ensure_not_locked(pir)
    transition(pir, PIRStatus.SUBMITTED)

    now = _now()
    changed = []
    for response in db.query(PIRResponse).filter(PIRResponse.pir_id == pir.id).all():
        status = ResponseStatus(response.status)
        if status in (ResponseStatus.DRAFT, ResponseStatus.FLAGGED):
            transition_response(response, ResponseStatus.SUBMITTED)
            response.submitted_at = now
            changed.append(response)
    db.flush()
    return changed


def begin_review(pir: PIRRequest) -> bool:
    """
    Customer opens the review screen.

    Moves a submitted (or flagged) request to in_review and starts a new
    review round. Returns False when the request was already in review.
    """
    status = PIRStatus(pir.status)
    if status == PIRStatus.IN_REVIEW:
        return False
    if status not in REVIEWABLE_STATUSES:
        raise TransitionError(
            f"PIR {pir.id} cannot be reviewed while '{status.value}'; "
            f"expected one of submitted, resubmitted, flagged",
            current=status.value,
            requested=PIRStatus.IN_REVIEW.value,
        )
    transition(pir, PIRStatus.IN_REVIEW)
    pir.review_round = (pir.review_round or 0) + 1
    return True
