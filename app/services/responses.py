"""
Answer/response aggregate.

A response is the supplier's answer to one question of one PIR, unique on
``(pir_id, question_id)``. The question set of a PIR is every question that
carries one of the PIR's tags, plus any question that already has a response.
"""
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.core.errors import ConflictError, LockedError, NotFoundError, PersistenceError, ValidationError
from app.core.logging import get_logger
from app.db.models import (
    AuditLog, PIRRequest, PIRResponse, Question, QuestionType, ResponseComment, ResponseFlag, ResponseStatus,
)
from app.db.session import get_db_context
from app.services import pir_lifecycle, question_bank
from app.services import sections as section_tree
from app.services.question_schema import is_answered, validate_answer

logger = get_logger(__name__)


@dataclass
class FormItem:
    """One numbered question of a PIR with its response state."""

    number: str
    section_name: str
    question: Question
    response: Optional[PIRResponse]
    latest_flag: Optional[ResponseFlag]
    comment_count: int
    answered: bool
    read_only: bool


def pir_questions(db: Session, pir: PIRRequest) -> List[Question]:
    """Questions of ``pir`` in numbered display order."""
    questions = {q.id: q for q in question_bank.questions_for_tags(db, [t.id for t in pir.tags])}
    answered_ids = [
        row[0] for row in db.query(PIRResponse.question_id).filter(PIRResponse.pir_id == pir.id)
        if row[0] not in questions
    ]
    if answered_ids:
        for q in db.query(Question).filter(Question.id.in_(answered_ids)).all():
            questions[q.id] = q
    return section_tree.order_questions(question_bank.list_sections(db), questions.values())


def get_pir_question(db: Session, pir: PIRRequest, question_id: int) -> Question:
    for question in pir_questions(db, pir):
        if question.id == question_id:
            return question
    raise NotFoundError(f"Question {question_id} is not part of PIR {pir.id}")


def find_response(db: Session, pir_id: int, question_id: int) -> Optional[PIRResponse]:
    return db.query(PIRResponse).filter(
        PIRResponse.pir_id == pir_id,
        PIRResponse.question_id == question_id,
    ).first()


def get_response(db: Session, response_id: int, ctx) -> PIRResponse:
    """Load a response whose PIR is visible to ``ctx``."""
    response = db.query(PIRResponse).filter(PIRResponse.id == response_id).first()
    if response is None:
        raise NotFoundError(f"Response {response_id} not found")
    # Raises NotFoundError for PIRs of other companies
    pir_lifecycle.get_accessible_pir(db, response.pir_id, ctx)
    return response


def response_answered(question: Question, response: Optional[PIRResponse]) -> bool:
    if response is None:
        return False
    if QuestionType(question.type) == QuestionType.COMPONENT_MATERIAL_LIST:
        return len(response.components) > 0
    return is_answered(question.type, response.answer)


def unanswered_required(db: Session, pir: PIRRequest) -> List[Question]:
    by_question = {r.question_id: r for r in db.query(PIRResponse).filter(PIRResponse.pir_id == pir.id)}
    return [
        q for q in pir_questions(db, pir)
        if q.required and not response_answered(q, by_question.get(q.id))
    ]


def load_response_form(db: Session, pir: PIRRequest, ctx) -> List[FormItem]:
    """Numbered questions of ``pir`` joined with their responses."""
    sections = question_bank.list_sections(db)
    questions = pir_questions(db, pir)
    responses = {
        r.question_id: r
        for r in db.query(PIRResponse)
        .options(
            selectinload(PIRResponse.flags),
            selectinload(PIRResponse.comments),
            selectinload(PIRResponse.components),
        )
        .filter(PIRResponse.pir_id == pir.id)
        .all()
    }

    supplier_can_edit = (
        ctx.company_id == pir.supplier_company_id
        and not pir_lifecycle.is_locked(pir)
        and pir_lifecycle.PIRStatus(pir.status) in pir_lifecycle.SUPPLIER_EDITABLE_STATUSES
    )

    items = []
    for group in section_tree.group_questions(sections, questions):
        for k, question in enumerate(group.questions, start=1):
            response = responses.get(question.id)
            approved = response is not None and ResponseStatus(response.status) == ResponseStatus.APPROVED
            items.append(FormItem(
                number=f"{group.number}.{k}",
                section_name=group.name,
                question=question,
                response=response,
                latest_flag=response.flags[-1] if response is not None and response.flags else None,
                comment_count=len(response.comments) if response is not None else 0,
                answered=response_answered(question, response),
                read_only=not supplier_can_edit or approved,
            ))
    return items


# ============= WRITES =============

def _upsert_insert(dialect_name: str):
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    if dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    return None


def ensure_placeholder_response(db: Session, pir_id: int, question_id: int) -> Tuple[PIRResponse, bool]:
    """
    Get or create the response row for ``(pir_id, question_id)``.

    Safe to call concurrently: the insert is ``ON CONFLICT DO NOTHING`` on the
    unique key, so duplicate calls converge to one row. Returns the row and
    whether this call created it.
    """
    insert = _upsert_insert(db.get_bind().dialect.name)
    values = {
        "pir_id": pir_id,
        "question_id": question_id,
        "answer": {},
        "status": ResponseStatus.DRAFT.value,
        "version": 1,
    }

    if insert is not None:
        stmt = insert(PIRResponse.__table__).values(**values).on_conflict_do_nothing(
            index_elements=["pir_id", "question_id"]
        )
        created = db.execute(stmt).rowcount == 1
    else:
        created = False
        if find_response(db, pir_id, question_id) is None:
            try:
                with db.begin_nested():
                    db.add(PIRResponse(**values))
                created = True
            except IntegrityError:
                logger.info(f"Response for PIR {pir_id} question {question_id} created concurrently")

    response = find_response(db, pir_id, question_id)
    if created:
        logger.info(f"Created placeholder response {response.id} for PIR {pir_id} question {question_id}")
    return response, created


def save_answer(db: Session, pir: PIRRequest, question: Question, answer, ctx,
                expected_version: Optional[int] = None) -> PIRResponse:
    """
    Validate and store the supplier's answer.

    New responses start as ``draft``; flagged responses stay flagged until the
    PIR is resubmitted. The first save on a sent PIR moves it to in_progress.
    """
    pir_lifecycle.ensure_editable_by_supplier(pir)
    normalized = validate_answer(question.type, question.options, answer)

    response, created = ensure_placeholder_response(db, pir.id, question.id)
    if ResponseStatus(response.status) == ResponseStatus.APPROVED:
        raise LockedError(f"Answer to question {question.id} is approved and can no longer be changed")
    if not created:
        if expected_version is not None and expected_version != response.version:
            raise ConflictError(
                f"Answer to question {question.id} was changed by someone else",
                current_version=response.version,
                expected_version=expected_version,
            )
        response.version = (response.version or 0) + 1
    response.answer = normalized

    pir_lifecycle.mark_in_progress(pir)
    db.flush()
    logger.info(
        f"Saved answer for PIR {pir.id} question {question.id} (v{response.version})",
        extra={**ctx.log_extra(), "entity_type": "pir_response", "entity_id": response.id},
    )
    return response


def save_answer_in_session(pir_id: int, question_id: int, answer, ctx,
                           expected_version: Optional[int] = None) -> dict:
    """Run ``save_answer`` in its own committed session (used by deferred saves)."""
    try:
        with get_db_context() as db:
            pir = pir_lifecycle.get_accessible_pir(db, pir_id, ctx, side="supplier")
            question = get_pir_question(db, pir, question_id)
            response = save_answer(db, pir, question, answer, ctx, expected_version=expected_version)
            db.add(AuditLog(
                user_id=ctx.user_id,
                company_id=ctx.company_id,
                action="save_answer",
                entity_type="pir_response",
                entity_id=response.id,
                details={"pir_id": pir_id, "question_id": question_id, "deferred": True},
            ))
            db.flush()
            return {"response_id": response.id, "version": response.version}
    except SQLAlchemyError as e:
        raise PersistenceError(f"Answer to question {question_id} could not be saved: {e.__class__.__name__}")


# ============= COMMENTS =============

def list_comments(response: PIRResponse) -> List[ResponseComment]:
    return list(response.comments)


def add_comment(db: Session, response: PIRResponse, ctx, text: str) -> ResponseComment:
    text = (text or "").strip()
    if not text:
        raise ValidationError("Comment text is required")
    pir_lifecycle.ensure_not_locked(response.pir)
    comment = ResponseComment(
        response_id=response.id,
        user_id=ctx.user_id,
        user_name=ctx.display_name,
        text=text,
    )
    db.add(comment)
    db.flush()
    return comment
