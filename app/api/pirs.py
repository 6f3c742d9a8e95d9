"""
PIR request API routes: create, list, detail and lifecycle actions.
"""
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.api.audit import add_audit_log
from app.api.companies import related_company_ids
from app.core.errors import ValidationError
from app.core.rbac import (
    RequestContext, require_reader, require_requester, require_responder, require_reviewer,
)
from app.core.security import get_role_value
from app.db.models import PIRRequest, PIRResponse, PIRStatus, Product, ResponseStatus
from app.db.session import get_db
from app.services import pir_lifecycle, question_bank, responses as response_service
from app.services.notifications import NotificationDispatcher, NotificationType, build_payload, get_notifier
from app.services.save_scheduler import SaveScheduler

router = APIRouter(prefix="/api/pirs", tags=["PIR Requests"])


# ============= SCHEMAS =============

class PIRCreate(BaseModel):
    supplier_company_id: int
    tag_ids: List[int]
    product_id: Optional[int] = None
    suggested_product_name: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    send: bool = False


def pir_dict(pir: PIRRequest, counts: Optional[dict] = None) -> dict:
    status = get_role_value(pir.status)
    data = {
        "id": pir.id,
        "title": pir.title,
        "description": pir.description,
        "status": status,
        "status_label": pir_lifecycle.PIR_STATUS_DISPLAY.get(pir.status, status),
        "locked": pir_lifecycle.is_locked(pir),
        "review_round": pir.review_round,
        "customer": {"id": pir.customer.id, "name": pir.customer.name},
        "supplier": {"id": pir.supplier.id, "name": pir.supplier.name},
        "product_id": pir.product_id,
        "product_name": pir.product.name if pir.product else None,
        "suggested_product_name": pir.suggested_product_name,
        "due_date": pir.due_date,
        "tags": [{"id": t.id, "name": t.name} for t in pir.tags],
        "created_at": pir.created_at,
        "updated_at": pir.updated_at,
    }
    if counts is not None:
        data["response_counts"] = counts
    return data


def _response_counts(db: Session, pir_ids: List[int]) -> dict:
    counts = {pid: {s.value: 0 for s in ResponseStatus} for pid in pir_ids}
    if not pir_ids:
        return counts
    rows = db.query(PIRResponse.pir_id, PIRResponse.status, func.count(PIRResponse.id)).filter(
        PIRResponse.pir_id.in_(pir_ids)
    ).group_by(PIRResponse.pir_id, PIRResponse.status).all()
    for pir_id, status, count in rows:
        counts[pir_id][get_role_value(status)] = count
    return counts


def notify(db: Session, notifier: NotificationDispatcher, notification_type: NotificationType,
           pir: PIRRequest, recipient: str, extra: Optional[dict] = None) -> List[str]:
    warning = notifier.dispatch(build_payload(db, notification_type, pir, recipient=recipient, extra=extra))
    return [warning] if warning else []


def get_save_scheduler(request: Request) -> SaveScheduler:
    return request.app.state.save_scheduler


# ============= ROUTES =============

@router.post("", status_code=201)
async def create_pir(
    request: Request,
    data: PIRCreate,
    ctx: RequestContext = Depends(require_requester),
    notifier: NotificationDispatcher = Depends(get_notifier),
    db: Session = Depends(get_db)
):
    """Request product information from a related supplier."""
    if data.supplier_company_id not in related_company_ids(db, ctx.company_id, as_customer=True):
        raise ValidationError(f"Company {data.supplier_company_id} is not an active supplier of yours")
    if not data.tag_ids:
        raise ValidationError("Select at least one tag")
    tags = question_bank.get_tags(db, data.tag_ids)
    if not question_bank.questions_for_tags(db, data.tag_ids):
        raise ValidationError("The selected tags have no questions")

    if data.product_id is not None:
        product = db.query(Product).filter(Product.id == data.product_id).first()
        if not product or product.supplier_company_id != data.supplier_company_id:
            raise ValidationError(f"Product {data.product_id} is not a product of this supplier")
    elif not (data.suggested_product_name or "").strip():
        raise ValidationError("Choose a product or suggest a product name")

    pir = PIRRequest(
        customer_id=ctx.company_id,
        supplier_company_id=data.supplier_company_id,
        product_id=data.product_id,
        suggested_product_name=(data.suggested_product_name or "").strip() or None,
        title=data.title,
        description=data.description,
        due_date=data.due_date,
        status=PIRStatus.DRAFT,
        created_by=ctx.user_id,
    )
    pir.tags = tags
    db.add(pir)
    db.flush()
    if data.send:
        pir_lifecycle.send_pir(pir)

    add_audit_log(
        db, request, ctx, "create_pir", "pir", pir.id,
        {"supplier_company_id": data.supplier_company_id, "tag_ids": data.tag_ids, "sent": data.send},
    )
    db.commit()
    db.refresh(pir)

    warnings = []
    if data.send:
        warnings = notify(db, notifier, NotificationType.PIR_STATUS_UPDATE, pir, recipient="supplier")
    return {"pir": pir_dict(pir), "warnings": warnings}


@router.get("")
async def list_pirs(
    direction: str = Query("all", pattern="^(incoming|outgoing|all)$",
                           description="incoming: addressed to us as supplier; outgoing: sent by us"),
    status: Optional[PIRStatus] = Query(None),
    ctx: RequestContext = Depends(require_reader),
    db: Session = Depends(get_db)
):
    """List PIRs of the current company with response counts."""
    query = db.query(PIRRequest)
    if direction == "incoming":
        query = query.filter(PIRRequest.supplier_company_id == ctx.company_id)
    elif direction == "outgoing":
        query = query.filter(PIRRequest.customer_id == ctx.company_id)
    else:
        query = query.filter(
            (PIRRequest.supplier_company_id == ctx.company_id) | (PIRRequest.customer_id == ctx.company_id)
        )
    if status is not None:
        query = query.filter(PIRRequest.status == status)

    pirs = query.order_by(PIRRequest.updated_at.desc(), PIRRequest.id.desc()).all()
    counts = _response_counts(db, [p.id for p in pirs])
    return [pir_dict(p, counts[p.id]) for p in pirs]


@router.get("/{pir_id}")
async def get_pir(
    pir_id: int,
    ctx: RequestContext = Depends(require_reader),
    db: Session = Depends(get_db)
):
    pir = pir_lifecycle.get_accessible_pir(db, pir_id, ctx)
    counts = _response_counts(db, [pir.id])[pir.id]
    data = pir_dict(pir, counts)
    data["question_count"] = len(response_service.pir_questions(db, pir))
    data["allowed_transitions"] = sorted(
        s.value for s in pir_lifecycle.PIR_STATUS_TRANSITIONS[PIRStatus(pir.status)]
    )
    return data


@router.post("/{pir_id}/send")
async def send_pir(
    pir_id: int,
    request: Request,
    ctx: RequestContext = Depends(require_requester),
    notifier: NotificationDispatcher = Depends(get_notifier),
    db: Session = Depends(get_db)
):
    """Send a draft PIR to the supplier."""
    pir = pir_lifecycle.get_accessible_pir(db, pir_id, ctx, side="customer")
    pir_lifecycle.send_pir(pir)
    add_audit_log(db, request, ctx, "send_pir", "pir", pir.id)
    db.commit()
    warnings = notify(db, notifier, NotificationType.PIR_STATUS_UPDATE, pir, recipient="supplier")
    return {"pir": pir_dict(pir), "warnings": warnings}


@router.post("/{pir_id}/submit")
async def submit_pir(
    pir_id: int,
    request: Request,
    ctx: RequestContext = Depends(require_responder),
    notifier: NotificationDispatcher = Depends(get_notifier),
    scheduler: SaveScheduler = Depends(get_save_scheduler),
    db: Session = Depends(get_db)
):
    """Submit (or resubmit) the supplier's answers for review."""
    pir = pir_lifecycle.get_accessible_pir(db, pir_id, ctx, side="supplier")

    # Deferred answer saves of this PIR must land before submission
    for key in scheduler.pending_keys():
        if key[0] == pir.id:
            await scheduler.flush(key)
    db.expire_all()

    resubmission = PIRStatus(pir.status) == PIRStatus.FLAGGED
    changed = pir_lifecycle.submit_pir(db, pir)
    missing = response_service.unanswered_required(db, pir)
    add_audit_log(
        db, request, ctx, "resubmit_pir" if resubmission else "submit_pir", "pir", pir.id,
        {"responses_submitted": len(changed), "unanswered_required": len(missing)},
    )
    db.commit()

    warnings = []
    if missing:
        warnings.append(f"{len(missing)} required question(s) are still unanswered")
    warnings += notify(db, notifier, NotificationType.PIR_STATUS_UPDATE, pir, recipient="customer")
    return {
        "pir": pir_dict(pir),
        "responses_submitted": len(changed),
        "unanswered_required": [q.id for q in missing],
        "warnings": warnings,
    }


@router.post("/{pir_id}/cancel")
async def cancel_pir(
    pir_id: int,
    request: Request,
    ctx: RequestContext = Depends(require_requester),
    notifier: NotificationDispatcher = Depends(get_notifier),
    db: Session = Depends(get_db)
):
    pir = pir_lifecycle.get_accessible_pir(db, pir_id, ctx, side="customer")
    pir_lifecycle.cancel_pir(pir)
    add_audit_log(db, request, ctx, "cancel_pir", "pir", pir.id)
    db.commit()
    warnings = notify(db, notifier, NotificationType.PIR_STATUS_UPDATE, pir, recipient="supplier")
    return {"pir": pir_dict(pir), "warnings": warnings}


@router.post("/{pir_id}/reject")
async def reject_pir(
    pir_id: int,
    request: Request,
    ctx: RequestContext = Depends(require_reviewer),
    notifier: NotificationDispatcher = Depends(get_notifier),
    db: Session = Depends(get_db)
):
    """Reject a PIR under review outright."""
    pir = pir_lifecycle.get_accessible_pir(db, pir_id, ctx, side="customer")
    pir_lifecycle.reject_pir(pir)
    add_audit_log(db, request, ctx, "reject_pir", "pir", pir.id)
    db.commit()
    warnings = notify(db, notifier, NotificationType.PIR_STATUS_UPDATE, pir, recipient="supplier")
    return {"pir": pir_dict(pir), "warnings": warnings}
