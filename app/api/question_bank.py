"""
Question bank API routes: sections, tags, questions and the Excel import.
"""
from typing import Any, List, Optional
from fastapi import APIRouter, Depends, File, Query, Request, UploadFile
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.audit import add_audit_log
from app.core.config import settings
from app.core.errors import NotFoundError, ValidationError
from app.core.rbac import RequestContext, require_question_admin, require_reader
from app.core.security import get_role_value
from app.db.models import Question, QuestionType, Tag
from app.db.session import get_db
from app.services import question_bank, question_import
from app.services import sections as section_tree
from app.services.question_schema import dump_columns, header_rows, parse_columns

router = APIRouter(prefix="/api/question-bank", tags=["Question Bank"])


# ============= SCHEMAS =============

class SectionCreate(BaseModel):
    name: str
    description: Optional[str] = None
    order: Optional[int] = None
    parent_id: Optional[int] = None


class SectionUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    order: Optional[int] = None
    parent_id: Optional[int] = None


class TagCreate(BaseModel):
    name: str
    description: Optional[str] = None


class TagUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class QuestionCreate(BaseModel):
    text: str
    type: QuestionType
    description: Optional[str] = None
    required: bool = False
    options: Optional[Any] = None
    section_id: Optional[int] = None
    order_index: Optional[int] = None
    tag_ids: List[int] = []


class QuestionUpdate(BaseModel):
    text: Optional[str] = None
    type: Optional[QuestionType] = None
    description: Optional[str] = None
    required: Optional[bool] = None
    options: Optional[Any] = None
    section_id: Optional[int] = None
    order_index: Optional[int] = None
    tag_ids: Optional[List[int]] = None


def tag_dict(tag: Tag) -> dict:
    return {"id": tag.id, "name": tag.name, "description": tag.description}


def question_dict(question: Question, number: Optional[str] = None) -> dict:
    return {
        "id": question.id,
        "number": number,
        "text": question.text,
        "description": question.description,
        "type": get_role_value(question.type),
        "required": question.required,
        "options": question.options,
        "section_id": question.section_id,
        "order_index": question.order_index,
        "tags": [tag_dict(t) for t in question.tags],
    }


def _question_numbers(db: Session):
    return section_tree.number_questions(question_bank.list_sections(db), db.query(Question).all())


# ============= SECTIONS =============

@router.get("/sections")
async def list_sections(
    ctx: RequestContext = Depends(require_reader),
    db: Session = Depends(get_db)
):
    """Section tree in display order with hierarchical numbers."""
    return [
        {
            "id": node.section.id,
            "number": node.number,
            "name": node.section.name,
            "description": node.section.description,
            "order": node.section.order,
            "subsections": [
                {
                    "id": child.section.id,
                    "number": child.number,
                    "name": child.section.name,
                    "description": child.section.description,
                    "order": child.section.order,
                    "parent_id": node.section.id,
                }
                for child in node.children
            ],
        }
        for node in section_tree.build_tree(question_bank.list_sections(db))
    ]


@router.post("/sections", status_code=201)
async def create_section(
    request: Request,
    data: SectionCreate,
    ctx: RequestContext = Depends(require_question_admin),
    db: Session = Depends(get_db)
):
    """Create a section, or a subsection when parent_id is given."""
    section = question_bank.create_section(
        db, name=data.name, description=data.description, order=data.order, parent_id=data.parent_id,
    )
    add_audit_log(db, request, ctx, "create_section", "question_section", section.id, data.model_dump())
    db.commit()
    number = section_tree.number_sections(question_bank.list_sections(db)).get(section.id)
    return {"id": section.id, "number": number, "name": section.name, "parent_id": section.parent_id,
            "order": section.order}


@router.put("/sections/{section_id}")
async def update_section(
    section_id: int,
    request: Request,
    data: SectionUpdate,
    ctx: RequestContext = Depends(require_question_admin),
    db: Session = Depends(get_db)
):
    """Rename, describe, reorder or move a section."""
    changes = data.model_dump(exclude_unset=True)
    section = question_bank.update_section(db, section_id, **changes)
    add_audit_log(db, request, ctx, "update_section", "question_section", section.id, changes)
    db.commit()
    number = section_tree.number_sections(question_bank.list_sections(db)).get(section.id)
    return {"id": section.id, "number": number, "name": section.name, "parent_id": section.parent_id,
            "order": section.order}


# ============= TAGS =============

@router.get("/tags")
async def list_tags(
    ctx: RequestContext = Depends(require_reader),
    db: Session = Depends(get_db)
):
    return [tag_dict(t) for t in db.query(Tag).order_by(Tag.name).all()]


@router.post("/tags", status_code=201)
async def create_tag(
    request: Request,
    data: TagCreate,
    ctx: RequestContext = Depends(require_question_admin),
    db: Session = Depends(get_db)
):
    tag = question_bank.create_tag(db, data.name, data.description)
    add_audit_log(db, request, ctx, "create_tag", "tag", tag.id, {"name": tag.name})
    db.commit()
    return tag_dict(tag)


@router.put("/tags/{tag_id}")
async def update_tag(
    tag_id: int,
    request: Request,
    data: TagUpdate,
    ctx: RequestContext = Depends(require_question_admin),
    db: Session = Depends(get_db)
):
    tag = question_bank.update_tag(db, tag_id, name=data.name, description=data.description)
    add_audit_log(db, request, ctx, "update_tag", "tag", tag.id, data.model_dump(exclude_unset=True))
    db.commit()
    return tag_dict(tag)


# ============= QUESTIONS =============

@router.get("/questions")
async def list_questions(
    tag_id: Optional[int] = Query(None, description="Only questions carrying this tag"),
    section_id: Optional[int] = Query(None, description="Only questions of this section"),
    ctx: RequestContext = Depends(require_reader),
    db: Session = Depends(get_db)
):
    """Questions in numbered display order."""
    numbers = _question_numbers(db)
    questions = question_bank.list_questions(db, tag_id=tag_id, section_id=section_id)
    return [question_dict(q, numbers.get(q.id)) for q in questions]


@router.get("/questions/{question_id}")
async def get_question(
    question_id: int,
    ctx: RequestContext = Depends(require_reader),
    db: Session = Depends(get_db)
):
    question = db.query(Question).filter(Question.id == question_id).first()
    if not question:
        raise NotFoundError(f"Question {question_id} not found")
    return question_dict(question, _question_numbers(db).get(question.id))


@router.get("/questions/{question_id}/table-layout")
async def get_table_layout(
    question_id: int,
    ctx: RequestContext = Depends(require_reader),
    db: Session = Depends(get_db)
):
    """Header rows (with column and row spans) and leaf columns of a list_table question."""
    question = db.query(Question).filter(Question.id == question_id).first()
    if not question:
        raise NotFoundError(f"Question {question_id} not found")
    if QuestionType(question.type) != QuestionType.LIST_TABLE:
        raise ValidationError(f"Question {question_id} is not a table question")
    columns = parse_columns(question.options)
    return {
        "columns": dump_columns(columns),
        "header_rows": [
            [
                {"name": cell.name, "path": list(cell.path), "col_span": cell.col_span, "row_span": cell.row_span}
                for cell in row
            ]
            for row in header_rows(columns)
        ],
    }


@router.post("/questions", status_code=201)
async def create_question(
    request: Request,
    data: QuestionCreate,
    ctx: RequestContext = Depends(require_question_admin),
    db: Session = Depends(get_db)
):
    question = question_bank.create_question(
        db,
        text=data.text,
        type=data.type,
        required=data.required,
        description=data.description,
        options=data.options,
        section_id=data.section_id,
        order_index=data.order_index,
        tag_ids=data.tag_ids,
    )
    add_audit_log(
        db, request, ctx, "create_question", "question", question.id,
        {"type": data.type.value, "section_id": data.section_id, "tag_ids": data.tag_ids},
    )
    db.commit()
    return question_dict(question, _question_numbers(db).get(question.id))


@router.put("/questions/{question_id}")
async def update_question(
    question_id: int,
    request: Request,
    data: QuestionUpdate,
    ctx: RequestContext = Depends(require_question_admin),
    db: Session = Depends(get_db)
):
    changes = data.model_dump(exclude_unset=True)
    question = question_bank.update_question(db, question_id, **changes)
    add_audit_log(db, request, ctx, "update_question", "question", question.id, {"fields": sorted(changes)})
    db.commit()
    return question_dict(question, _question_numbers(db).get(question.id))


# ============= IMPORT =============

IMPORT_EXTENSIONS = ("xlsx", "xlsm")


@router.post("/import")
async def import_questions(
    request: Request,
    file: UploadFile = File(...),
    sheet: Optional[str] = None,
    ctx: RequestContext = Depends(require_question_admin),
    db: Session = Depends(get_db)
):
    """Create questions, sections and tags from an Excel sheet (first sheet unless ``sheet`` is given)."""
    if not file.filename:
        raise ValidationError("Filename is required")
    ext = file.filename.lower().rsplit(".", 1)[-1]
    if ext not in IMPORT_EXTENSIONS:
        raise ValidationError("File must be an Excel workbook (.xlsx)")

    content = await file.read()
    if len(content) > settings.MAX_UPLOAD_SIZE:
        raise ValidationError("File too large")

    result = question_import.import_questions(db, content, sheet=sheet)
    add_audit_log(
        db, request, ctx, "import_questions", "question", None,
        {"filename": file.filename, "sheet": result.sheet, "created": len(result.created),
         "errors": len(result.errors)},
    )
    db.commit()
    return result.as_dict()
