"""
Answer API routes: the supplier form, answer saves, comments and flag history.
"""
from typing import Any, Optional
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.audit import add_audit_log
from app.api.pirs import get_save_scheduler
from app.api.question_bank import question_dict
from app.core.rbac import RequestContext, require_commenter, require_reader, require_responder
from app.core.security import get_role_value
from app.db.models import PIRResponse, ResponseComment, ResponseFlag
from app.db.session import get_db
from app.services import pir_lifecycle, responses as response_service
from app.services.question_schema import format_answer, validate_answer
from app.services.save_scheduler import SaveScheduler, SaveStatus

router = APIRouter(prefix="/api", tags=["Responses"])


# ============= SCHEMAS =============

class AnswerUpdate(BaseModel):
    answer: Any = None
    expected_version: Optional[int] = None
    debounce: bool = False
    delay_ms: Optional[int] = None


class CommentCreate(BaseModel):
    text: str


def response_dict(response: Optional[PIRResponse]) -> Optional[dict]:
    if response is None:
        return None
    return {
        "id": response.id,
        "pir_id": response.pir_id,
        "question_id": response.question_id,
        "answer": response.answer,
        "status": get_role_value(response.status),
        "version": response.version,
        "submitted_at": response.submitted_at,
        "updated_at": response.updated_at,
    }


def flag_dict(flag: Optional[ResponseFlag]) -> Optional[dict]:
    if flag is None:
        return None
    return {
        "id": flag.id,
        "response_id": flag.response_id,
        "description": flag.description,
        "status": get_role_value(flag.status),
        "created_by": flag.created_by,
        "created_by_name": flag.created_by_name,
        "created_at": flag.created_at,
        "resolved_at": flag.resolved_at,
        "resolved_by": flag.resolved_by,
    }


def comment_dict(comment: ResponseComment) -> dict:
    return {
        "id": comment.id,
        "response_id": comment.response_id,
        "user_id": comment.user_id,
        "user_name": comment.user_name,
        "text": comment.text,
        "created_at": comment.created_at,
    }


def save_status_dict(save_status: SaveStatus) -> dict:
    return {
        "state": save_status.state,
        "result": save_status.result,
        "last_error": save_status.last_error,
        "saved_at": save_status.saved_at,
        "unsaved_answer": save_status.value["answer"] if save_status.state in ("pending", "error") else None,
    }


# ============= FORM =============

@router.get("/pirs/{pir_id}/form")
async def get_response_form(
    pir_id: int,
    ctx: RequestContext = Depends(require_reader),
    db: Session = Depends(get_db)
):
    """Numbered questions of a PIR with the current answers."""
    pir = pir_lifecycle.get_accessible_pir(db, pir_id, ctx)
    items = response_service.load_response_form(db, pir, ctx)
    return {
        "pir_id": pir.id,
        "status": get_role_value(pir.status),
        "locked": pir_lifecycle.is_locked(pir),
        "answered": sum(1 for i in items if i.answered),
        "total": len(items),
        "items": [
            {
                "number": item.number,
                "section": item.section_name,
                "question": question_dict(item.question, item.number),
                "response": response_dict(item.response),
                "answer_display": format_answer(
                    item.question.type, item.question.options, item.response.answer if item.response else None
                ),
                "latest_flag": flag_dict(item.latest_flag),
                "comment_count": item.comment_count,
                "answered": item.answered,
                "read_only": item.read_only,
            }
            for item in items
        ],
    }


# ============= ANSWERS =============

@router.put("/pirs/{pir_id}/responses/{question_id}")
async def save_answer(
    pir_id: int,
    question_id: int,
    request: Request,
    data: AnswerUpdate,
    ctx: RequestContext = Depends(require_responder),
    scheduler: SaveScheduler = Depends(get_save_scheduler),
    db: Session = Depends(get_db)
):
    """
    Save one answer.

    With ``debounce`` the value is queued and written after a quiet period;
    the response is 202 and ``save-status`` reports progress. Otherwise the
    answer is written now and ``expected_version`` guards against
    overwriting someone else's change.
    """
    pir = pir_lifecycle.get_accessible_pir(db, pir_id, ctx, side="supplier")
    question = response_service.get_pir_question(db, pir, question_id)

    if data.debounce:
        # Reject bad input now rather than when the timer fires
        pir_lifecycle.ensure_editable_by_supplier(pir)
        validate_answer(question.type, question.options, data.answer)
        delay = data.delay_ms / 1000.0 if data.delay_ms is not None else None
        save_status = scheduler.schedule((pir.id, question.id), {"answer": data.answer, "ctx": ctx}, delay)
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"state": save_status.state},
        )

    response = response_service.save_answer(
        db, pir, question, data.answer, ctx, expected_version=data.expected_version,
    )
    add_audit_log(
        db, request, ctx, "save_answer", "pir_response", response.id,
        {"pir_id": pir.id, "question_id": question.id, "version": response.version},
    )
    db.commit()
    db.refresh(response)
    return response_dict(response)


@router.post("/pirs/{pir_id}/responses/{question_id}/save")
async def flush_answer(
    pir_id: int,
    question_id: int,
    ctx: RequestContext = Depends(require_responder),
    scheduler: SaveScheduler = Depends(get_save_scheduler),
    db: Session = Depends(get_db)
):
    """Write a queued answer immediately (explicit Save)."""
    pir = pir_lifecycle.get_accessible_pir(db, pir_id, ctx, side="supplier")
    save_status = await scheduler.flush((pir.id, question_id))
    return save_status_dict(save_status)


@router.get("/pirs/{pir_id}/responses/{question_id}/save-status")
async def get_save_status(
    pir_id: int,
    question_id: int,
    ctx: RequestContext = Depends(require_responder),
    scheduler: SaveScheduler = Depends(get_save_scheduler),
    db: Session = Depends(get_db)
):
    pir = pir_lifecycle.get_accessible_pir(db, pir_id, ctx, side="supplier")
    return save_status_dict(scheduler.status((pir.id, question_id)))


# ============= COMMENTS & FLAGS =============

@router.get("/responses/{response_id}/comments")
async def list_comments(
    response_id: int,
    ctx: RequestContext = Depends(require_reader),
    db: Session = Depends(get_db)
):
    response = response_service.get_response(db, response_id, ctx)
    return [comment_dict(c) for c in response_service.list_comments(response)]


@router.post("/responses/{response_id}/comments", status_code=201)
async def add_comment(
    response_id: int,
    request: Request,
    data: CommentCreate,
    ctx: RequestContext = Depends(require_commenter),
    db: Session = Depends(get_db)
):
    response = response_service.get_response(db, response_id, ctx)
    comment = response_service.add_comment(db, response, ctx, data.text)
    add_audit_log(db, request, ctx, "add_comment", "pir_response", response.id, {"comment_id": comment.id})
    db.commit()
    db.refresh(comment)
    return comment_dict(comment)


@router.get("/responses/{response_id}/flags")
async def list_flags(
    response_id: int,
    ctx: RequestContext = Depends(require_reader),
    db: Session = Depends(get_db)
):
    """Flag history of a response, oldest first."""
    response = response_service.get_response(db, response_id, ctx)
    return [flag_dict(f) for f in response.flags]
