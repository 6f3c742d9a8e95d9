"""
Review API routes: the customer's review of a submitted PIR.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.audit import add_audit_log
from app.api.pirs import notify, pir_dict
from app.api.question_bank import question_dict
from app.api.responses import flag_dict, response_dict
from app.core.rbac import RequestContext, require_reader, require_reviewer
from app.db.session import get_db
from app.services import pir_lifecycle, review as review_service
from app.services.notifications import NotificationDispatcher, NotificationType, get_notifier
from app.services.review import ReviewDecision, ReviewStatus

router = APIRouter(prefix="/api/pirs", tags=["Review"])


# ============= SCHEMAS =============

class ReviewDecisionIn(BaseModel):
    response_id: int
    status: ReviewStatus
    note: Optional[str] = None


class ReviewSubmit(BaseModel):
    decisions: List[ReviewDecisionIn] = []
    product_id: Optional[int] = None


def review_item_dict(item: review_service.ReviewItem) -> dict:
    return {
        "number": item.number,
        "question": question_dict(item.response.question, item.number),
        "response": response_dict(item.response),
        "answer_display": item.answer_display,
        "review_status": item.status.value,
        "note": item.note,
        "latest_flag": flag_dict(review_service.latest_flag(item.response)),
        "previously_approved": item.previously_approved,
        "has_flag_history": item.has_flag_history,
        "read_only": item.read_only,
    }


# ============= ROUTES =============

@router.get("/{pir_id}/review")
async def get_review(
    pir_id: int,
    tab: str = Query("all", description="all | pending | flagged | approved"),
    ctx: RequestContext = Depends(require_reader),
    db: Session = Depends(get_db)
):
    """Review items of a PIR under ``tab``, with per-tab counts."""
    pir = pir_lifecycle.get_accessible_pir(db, pir_id, ctx, side="customer")
    state = review_service.load_review(db, pir)
    items = review_service.filter_items(state, tab)
    return {
        "pir": pir_dict(pir),
        "tab": tab,
        "later_round": state.later_round,
        "locked": state.locked,
        "counts": {t: len(review_service.filter_items(state, t)) for t in review_service.REVIEW_TABS},
        "items": [review_item_dict(i) for i in items],
    }


@router.post("/{pir_id}/review/open")
async def open_review(
    pir_id: int,
    request: Request,
    ctx: RequestContext = Depends(require_reviewer),
    notifier: NotificationDispatcher = Depends(get_notifier),
    db: Session = Depends(get_db)
):
    """Start reviewing a submitted PIR (moves it to in_review)."""
    pir = pir_lifecycle.get_accessible_pir(db, pir_id, ctx, side="customer")
    started = pir_lifecycle.begin_review(pir)
    warnings = []
    if started:
        add_audit_log(db, request, ctx, "open_review", "pir", pir.id, {"review_round": pir.review_round})
        db.commit()
        warnings = notify(db, notifier, NotificationType.PIR_STATUS_UPDATE, pir, recipient="supplier")
    return {"pir": pir_dict(pir), "started": started, "warnings": warnings}


@router.post("/{pir_id}/review")
async def submit_review(
    pir_id: int,
    request: Request,
    data: ReviewSubmit,
    ctx: RequestContext = Depends(require_reviewer),
    notifier: NotificationDispatcher = Depends(get_notifier),
    db: Session = Depends(get_db)
):
    """
    Submit review decisions for every response.

    The PIR becomes approved when nothing is flagged and flagged otherwise.
    Flagging requires a note. Every response without a decision must
    already have one from an earlier round.
    """
    pir = pir_lifecycle.get_accessible_pir(db, pir_id, ctx, side="customer")
    decisions = [ReviewDecision(d.response_id, d.status, d.note) for d in data.decisions]
    outcome = review_service.submit_review(
        db, pir, decisions, ctx, notifier=notifier, product_id=data.product_id,
    )

    add_audit_log(
        db, request, ctx, "submit_review", "pir", pir.id,
        {
            "result": outcome.pir_status.value,
            "approved": outcome.approved_ids,
            "flagged": outcome.flagged_ids,
            "product_id": data.product_id,
        },
    )
    db.commit()
    return {
        "pir": pir_dict(pir),
        "status": outcome.pir_status.value,
        "approved_ids": outcome.approved_ids,
        "flagged_ids": outcome.flagged_ids,
        "new_flag_ids": outcome.new_flag_ids,
        "warnings": outcome.warnings,
    }
