"""
Question bank: sections, tags and questions, and the tag-based selection of
the questions that make up a PIR.
"""
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from app.core.errors import NotFoundError, ValidationError
from app.core.logging import get_logger
from app.db.models import Question, QuestionSection, QuestionTag, Tag
from app.services import sections as section_tree
from app.services.question_schema import validate_options

logger = get_logger(__name__)


# ============= SECTIONS =============

def list_sections(db: Session) -> List[QuestionSection]:
    return db.query(QuestionSection).all()


def create_section(db: Session, name: str, description: Optional[str] = None,
                   order: Optional[int] = None, parent_id: Optional[int] = None) -> QuestionSection:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Section name is required")

    existing = {s.id: s for s in list_sections(db)}
    section_tree.validate_parent(existing, parent_id)

    if order is None:
        # Append after the last sibling
        siblings = [s.order or 0 for s in existing.values() if s.parent_id == parent_id]
        order = max(siblings, default=0) + 1

    section = QuestionSection(name=name, description=description, order=order, parent_id=parent_id)
    db.add(section)
    db.flush()
    return section


def update_section(db: Session, section_id: int, **changes) -> QuestionSection:
    """Rename, re-describe, reorder or re-parent a section."""
    existing = {s.id: s for s in list_sections(db)}
    section = existing.get(section_id)
    if section is None:
        raise NotFoundError(f"Section {section_id} not found")

    if "name" in changes:
        name = (changes["name"] or "").strip()
        if not name:
            raise ValidationError("Section name is required")
        section.name = name
    if "description" in changes:
        section.description = changes["description"]
    if "order" in changes and changes["order"] is not None:
        section.order = changes["order"]
    if "parent_id" in changes:
        section_tree.validate_parent(existing, changes["parent_id"], section_id)
        section.parent_id = changes["parent_id"]
    db.flush()
    return section


# ============= TAGS =============

def get_tags(db: Session, tag_ids: Iterable[int]) -> List[Tag]:
    ids = sorted(set(tag_ids))
    if not ids:
        return []
    tags = db.query(Tag).filter(Tag.id.in_(ids)).all()
    missing = set(ids) - {t.id for t in tags}
    if missing:
        raise ValidationError(f"Unknown tag id(s): {sorted(missing)}")
    return tags


def create_tag(db: Session, name: str, description: Optional[str] = None) -> Tag:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Tag name is required")
    clash = db.query(Tag).filter(func.lower(Tag.name) == name.lower()).first()
    if clash:
        raise ValidationError(f"Tag '{clash.name}' already exists")
    tag = Tag(name=name, description=description)
    db.add(tag)
    db.flush()
    return tag


def update_tag(db: Session, tag_id: int, name: Optional[str] = None, description: Optional[str] = None) -> Tag:
    tag = db.query(Tag).filter(Tag.id == tag_id).first()
    if not tag:
        raise NotFoundError(f"Tag {tag_id} not found")
    if name is not None:
        name = name.strip()
        if not name:
            raise ValidationError("Tag name is required")
        clash = db.query(Tag).filter(func.lower(Tag.name) == name.lower(), Tag.id != tag_id).first()
        if clash:
            raise ValidationError(f"Tag '{clash.name}' already exists")
        tag.name = name
    if description is not None:
        tag.description = description
    db.flush()
    return tag


# ============= QUESTIONS =============

def _check_section(db: Session, section_id: Optional[int]):
    if section_id is not None and not db.query(QuestionSection).filter(QuestionSection.id == section_id).first():
        raise ValidationError(f"Section {section_id} does not exist")


def create_question(db: Session, text: str, type: str, required: bool = False,
                    description: Optional[str] = None, options=None,
                    section_id: Optional[int] = None, order_index: Optional[int] = None,
                    tag_ids: Sequence[int] = ()) -> Question:
    text = (text or "").strip()
    if not text:
        raise ValidationError("Question text is required")
    normalized = validate_options(type, options)
    _check_section(db, section_id)

    if order_index is None:
        last = db.query(func.max(Question.order_index)).filter(Question.section_id == section_id).scalar()
        order_index = (last or 0) + 1

    question = Question(
        text=text,
        description=description,
        type=type,
        required=required,
        options=normalized,
        section_id=section_id,
        order_index=order_index,
    )
    question.tags = get_tags(db, tag_ids)
    db.add(question)
    db.flush()
    return question


def update_question(db: Session, question_id: int, **changes) -> Question:
    question = db.query(Question).filter(Question.id == question_id).first()
    if not question:
        raise NotFoundError(f"Question {question_id} not found")

    if "text" in changes:
        text = (changes["text"] or "").strip()
        if not text:
            raise ValidationError("Question text is required")
        question.text = text
    for key in ("description", "required", "order_index"):
        if key in changes and changes[key] is not None:
            setattr(question, key, changes[key])
    if "section_id" in changes:
        _check_section(db, changes["section_id"])
        question.section_id = changes["section_id"]
    if "type" in changes or "options" in changes:
        new_type = changes.get("type") or question.type
        new_options = changes["options"] if "options" in changes else question.options
        question.options = validate_options(new_type, new_options)
        question.type = new_type
    if "tag_ids" in changes and changes["tag_ids"] is not None:
        question.tags = get_tags(db, changes["tag_ids"])
    db.flush()
    return question


def list_questions(db: Session, tag_id: Optional[int] = None, section_id: Optional[int] = None) -> List[Question]:
    query = db.query(Question).options(selectinload(Question.tags))
    if tag_id is not None:
        query = query.join(QuestionTag, QuestionTag.question_id == Question.id).filter(QuestionTag.tag_id == tag_id)
    if section_id is not None:
        query = query.filter(Question.section_id == section_id)
    return section_tree.order_questions(list_sections(db), query.all())


def questions_for_tags(db: Session, tag_ids: Iterable[int]) -> List[Question]:
    """Questions carrying at least one of ``tag_ids``, in numbered display order."""
    ids = list(set(tag_ids))
    if not ids:
        return []
    question_ids = [
        row[0] for row in db.query(QuestionTag.question_id).filter(QuestionTag.tag_id.in_(ids)).distinct()
    ]
    if not question_ids:
        return []
    questions = (
        db.query(Question)
        .options(selectinload(Question.tags))
        .filter(Question.id.in_(question_ids))
        .all()
    )
    return section_tree.order_questions(list_sections(db), questions)
