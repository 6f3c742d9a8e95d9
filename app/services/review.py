"""
Customer review of a submitted PIR.

Each response gets a review status (pending, approved or flagged). The batch
is submitted at once: the PIR ends ``approved`` when nothing is flagged and
``flagged`` otherwise, every response status is updated, one flag row is
written per newly flagged response, and the optional product link is stored
with the approval. All of it commits in one transaction.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.core.errors import LockedError, PersistenceError, PIRError, ValidationError
from app.core.logging import get_logger
from app.db.models import (
    FlagStatus, PIRRequest, PIRResponse, PIRStatus, Product, ResponseFlag, ResponseStatus,
)
from app.services import pir_lifecycle, question_bank
from app.services import sections as section_tree
from app.services.notifications import NotificationType, build_payload
from app.services.question_schema import format_answer

logger = get_logger(__name__)

REVIEW_TABS = ("all", "pending", "flagged", "approved")


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    FLAGGED = "flagged"


def latest_flag(response: PIRResponse) -> Optional[ResponseFlag]:
    if not response.flags:
        return None
    # Unflushed flags have no created_at yet and count as newest
    return max(response.flags, key=lambda f: (f.created_at is None, f.created_at, f.id or 0))


def initial_review_status(response: PIRResponse) -> ReviewStatus:
    status = ResponseStatus(response.status)
    if status == ResponseStatus.APPROVED:
        return ReviewStatus.APPROVED
    if status == ResponseStatus.FLAGGED or response.flags:
        return ReviewStatus.FLAGGED
    return ReviewStatus.PENDING


@dataclass
class ReviewItem:
    response: PIRResponse
    number: str
    status: ReviewStatus
    note: str = ""
    previously_approved: bool = False
    has_flag_history: bool = False
    read_only: bool = False

    @property
    def answer_display(self) -> str:
        question = self.response.question
        return format_answer(question.type, question.options, self.response.answer)


@dataclass
class ReviewState:
    pir: PIRRequest
    later_round: bool
    locked: bool
    items: List[ReviewItem] = field(default_factory=list)
    # Draft answers saved since the last submission; not reviewable yet
    unsubmitted_ids: List[int] = field(default_factory=list)

    def item(self, response_id: int) -> Optional[ReviewItem]:
        for item in self.items:
            if item.response.id == response_id:
                return item
        return None


@dataclass
class ReviewDecision:
    response_id: int
    status: ReviewStatus
    note: Optional[str] = None


@dataclass
class ReviewOutcome:
    pir_status: PIRStatus
    approved_ids: List[int]
    flagged_ids: List[int]
    new_flag_ids: List[int]
    warnings: List[str] = field(default_factory=list)


def load_review(db: Session, pir: PIRRequest) -> ReviewState:
    responses = (
        db.query(PIRResponse)
        .options(selectinload(PIRResponse.flags), selectinload(PIRResponse.question))
        .filter(PIRResponse.pir_id == pir.id)
        .all()
    )
    numbers = section_tree.number_questions(
        question_bank.list_sections(db), [r.question for r in responses]
    )
    locked = pir_lifecycle.is_locked(pir)
    state = ReviewState(pir=pir, later_round=pir_lifecycle.is_later_round(pir), locked=locked)

    for response in section_tree.sort_by_number(responses, numbers, key=lambda r: r.question_id):
        if ResponseStatus(response.status) == ResponseStatus.DRAFT:
            state.unsubmitted_ids.append(response.id)
            continue
        status = initial_review_status(response)
        flag = latest_flag(response) if status == ReviewStatus.FLAGGED else None
        approved = ResponseStatus(response.status) == ResponseStatus.APPROVED
        state.items.append(ReviewItem(
            response=response,
            number=numbers.get(response.question_id, ""),
            status=status,
            note=flag.description if flag else "",
            previously_approved=approved,
            has_flag_history=bool(response.flags),
            read_only=locked or approved,
        ))
    return state


def filter_items(state: ReviewState, tab: str = "all") -> List[ReviewItem]:
    """
    Items shown under ``tab``.

    In a later review round, answers approved earlier are hidden from
    ``all``; ``pending`` never lists answers with flag history.
    """
    if tab not in REVIEW_TABS:
        raise ValidationError(f"Unknown review tab '{tab}'", allowed=list(REVIEW_TABS))
    if tab == "all":
        if state.later_round and not state.locked:
            return [i for i in state.items if not i.previously_approved]
        return list(state.items)
    if tab == "pending":
        return [i for i in state.items if i.status == ReviewStatus.PENDING and not i.has_flag_history]
    return [i for i in state.items if i.status == ReviewStatus(tab)]


def validate_submission(state: ReviewState,
                        decisions: Sequence[ReviewDecision]) -> Dict[int, Tuple[ReviewStatus, str]]:
    """
    Merge ``decisions`` into the loaded review and check it can be submitted.

    Returns ``{response_id: (status, note)}`` for every response. Nothing is
    written here.
    """
    if state.locked:
        raise LockedError(f"PIR {state.pir.id} is approved; its review is closed")

    effective = {item.response.id: (item.status, item.note) for item in state.items}
    seen = set()
    for decision in decisions:
        item = state.item(decision.response_id)
        if item is None and decision.response_id in state.unsubmitted_ids:
            raise ValidationError(
                f"Response {decision.response_id} has not been submitted by the supplier yet",
                response_id=decision.response_id,
            )
        if item is None:
            raise ValidationError(f"Response {decision.response_id} does not belong to PIR {state.pir.id}")
        if decision.response_id in seen:
            raise ValidationError(f"Response {decision.response_id} was reviewed twice")
        seen.add(decision.response_id)

        status = ReviewStatus(decision.status)
        if item.previously_approved and status != ReviewStatus.APPROVED:
            raise LockedError(f"Answer {item.number} is already approved and cannot be changed")
        if status == ReviewStatus.FLAGGED:
            note = (decision.note or "").strip()
            if not note:
                raise ValidationError(f"A note is required to flag answer {item.number}")
            effective[item.response.id] = (status, note)
        elif status == ReviewStatus.APPROVED:
            effective[item.response.id] = (status, "")
        else:
            effective[item.response.id] = (status, item.note)

    required = [i for i in state.items if not (state.later_round and i.previously_approved)]
    pending = [i for i in required if effective[i.response.id][0] == ReviewStatus.PENDING]
    if pending:
        raise ValidationError(
            f"{len(pending)} response(s) still need a review decision",
            pending_count=len(pending),
            pending_response_ids=[i.response.id for i in pending],
        )
    for item in state.items:
        status, note = effective[item.response.id]
        if status == ReviewStatus.FLAGGED and not note:
            raise ValidationError(f"A note is required to flag answer {item.number}")
    return effective


def _resolve_open_flags(response: PIRResponse, user_id: int, now: datetime):
    for flag in response.flags:
        if FlagStatus(flag.status) in (FlagStatus.OPEN, FlagStatus.IN_PROGRESS):
            flag.status = FlagStatus.RESOLVED
            flag.resolved_at = now
            flag.resolved_by = user_id


def _check_product(db: Session, pir: PIRRequest, product_id: int):
    product = db.query(Product).filter(Product.id == product_id).first()
    if product is None or product.supplier_company_id != pir.supplier_company_id:
        raise ValidationError(f"Product {product_id} is not a product of the supplier")


def submit_review(db: Session, pir: PIRRequest, decisions: Sequence[ReviewDecision], ctx,
                  notifier=None, product_id: Optional[int] = None) -> ReviewOutcome:
    """Apply a review batch atomically, then notify the supplier."""
    try:
        pir_lifecycle.ensure_not_locked(pir)
        started = pir_lifecycle.begin_review(pir)
        db.flush()
        # Snapshot the in_review status before the outcome overwrites it
        review_started = None
        if started and notifier is not None:
            review_started = build_payload(db, NotificationType.PIR_STATUS_UPDATE, pir, recipient="supplier")
        state = load_review(db, pir)
        effective = validate_submission(state, decisions)
        if product_id is not None:
            _check_product(db, pir, product_id)

        now = datetime.now(timezone.utc)
        approved_ids, flagged_ids, new_flags = [], [], []
        for item in state.items:
            response = item.response
            status, note = effective[response.id]
            if status == ReviewStatus.APPROVED:
                pir_lifecycle.transition_response(response, ResponseStatus.APPROVED)
                _resolve_open_flags(response, ctx.user_id, now)
                approved_ids.append(response.id)
                continue

            # Unchanged re-flag of an already flagged answer adds no history
            current = latest_flag(response)
            repeat = (
                ResponseStatus(response.status) == ResponseStatus.FLAGGED
                and current is not None
                and current.description == note
            )
            if not repeat:
                flag = ResponseFlag(
                    response_id=response.id,
                    description=note,
                    created_by=ctx.user_id,
                    created_by_name=ctx.display_name,
                    status=FlagStatus.OPEN,
                )
                db.add(flag)
                new_flags.append(flag)
            pir_lifecycle.transition_response(response, ResponseStatus.FLAGGED)
            flagged_ids.append(response.id)

        target = PIRStatus.FLAGGED if flagged_ids else PIRStatus.APPROVED
        pir_lifecycle.transition(pir, target)
        if target == PIRStatus.APPROVED and product_id is not None:
            pir.product_id = product_id
        db.flush()
        new_flag_ids = [f.id for f in new_flags]
        db.commit()
    except PIRError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Review submission for PIR {pir.id} failed: {e}", extra=ctx.log_extra())
        raise PersistenceError("The review could not be saved; nothing was changed. Please retry.")

    logger.info(
        f"Review of PIR {pir.id} completed: {target.value} "
        f"({len(approved_ids)} approved, {len(flagged_ids)} flagged)",
        extra={**ctx.log_extra(), "action": "submit_review", "entity_type": "pir", "entity_id": pir.id},
    )

    outcome = ReviewOutcome(
        pir_status=target,
        approved_ids=approved_ids,
        flagged_ids=flagged_ids,
        new_flag_ids=new_flag_ids,
    )
    if review_started is not None:
        warning = notifier.dispatch(review_started)
        if warning:
            outcome.warnings.append(warning)
    if notifier is not None:
        flagged = [
            {"number": item.number, "question": item.response.question.text, "note": effective[item.response.id][1]}
            for item in state.items if item.response.id in flagged_ids
        ]
        payload = build_payload(
            db, NotificationType.REVIEW_COMPLETED, pir, recipient="supplier",
            extra={"flagged": flagged, "approved_count": len(approved_ids)},
        )
        warning = notifier.dispatch(payload)
        if warning:
            outcome.warnings.append(warning)
    return outcome
