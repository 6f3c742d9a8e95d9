"""
Question bank import from an Excel workbook.

The first row of the chosen sheet holds the headers. Each header is mapped
to a question field by keyword (``Question Text``, ``Type``, ``Required``,
``Options``, ``Section``, ``Subsection``, ``Tags``, ``Description``);
unrecognized columns are ignored. Every following row becomes a question.
Missing sections, subsections and tags are created on the way.

A row is checked completely before anything is written for it, so a bad row
is reported and skipped without leaving half-created records behind.
"""
import json
import zipfile
from dataclasses import dataclass, field
from io import BytesIO
from typing import Dict, List, Optional, Tuple

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy.orm import Session

from app.core.errors import ValidationError
from app.core.logging import get_logger
from app.db.models import QuestionSection, QuestionType, Tag
from app.services import question_bank
from app.services.question_schema import validate_options

logger = get_logger(__name__)

# Checked in order: "Subsection" is not a section, "Question Type" is not the text
HEADER_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("subsection", ("subsection", "subcategory")),
    ("description", ("description",)),
    ("type", ("type",)),
    ("required", ("required", "mandatory")),
    ("options", ("option", "choices", "columns")),
    ("section", ("section", "category")),
    ("tags", ("tag",)),
    ("text", ("question", "text")),
)

TYPE_ALIASES: Dict[str, QuestionType] = {
    "text": QuestionType.TEXT,
    "string": QuestionType.TEXT,
    "number": QuestionType.NUMBER,
    "numeric": QuestionType.NUMBER,
    "boolean": QuestionType.BOOLEAN,
    "yes/no": QuestionType.BOOLEAN,
    "single choice": QuestionType.SINGLE_SELECT,
    "single": QuestionType.SINGLE_SELECT,
    "select": QuestionType.SINGLE_SELECT,
    "dropdown": QuestionType.SINGLE_SELECT,
    "single_select": QuestionType.SINGLE_SELECT,
    "multiple": QuestionType.MULTI_SELECT,
    "multiple choice": QuestionType.MULTI_SELECT,
    "multi-select": QuestionType.MULTI_SELECT,
    "multi_select": QuestionType.MULTI_SELECT,
    "date": QuestionType.DATE,
    "file": QuestionType.FILE,
    "file upload": QuestionType.FILE,
    "table": QuestionType.LIST_TABLE,
    "list_table": QuestionType.LIST_TABLE,
    "component list": QuestionType.COMPONENT_MATERIAL_LIST,
    "component_material_list": QuestionType.COMPONENT_MATERIAL_LIST,
}

TRUE_WORDS = frozenset({"yes", "y", "true", "1", "x"})


@dataclass
class ImportResult:
    sheet: str
    created: List[int] = field(default_factory=list)
    skipped: int = 0
    sections_created: int = 0
    tags_created: int = 0
    errors: List[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "sheet": self.sheet,
            "created": len(self.created),
            "question_ids": self.created,
            "skipped": self.skipped,
            "sections_created": self.sections_created,
            "tags_created": self.tags_created,
            "errors": self.errors,
        }


@dataclass
class _Row:
    text: str
    type: QuestionType
    required: bool
    options: object
    description: Optional[str]
    section: Optional[str]
    subsection: Optional[str]
    tags: List[str]


def map_headers(headers) -> Dict[int, str]:
    """Column index -> question field for every recognized header."""
    mapping: Dict[int, str] = {}
    taken = set()
    for index, header in enumerate(headers):
        label = _cell_text(header).lower()
        if not label:
            continue
        for name, keywords in HEADER_KEYWORDS:
            if name not in taken and any(word in label for word in keywords):
                mapping[index] = name
                taken.add(name)
                break
    if "text" not in taken:
        raise ValidationError("The sheet needs a 'Question Text' column")
    return mapping


def _cell_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _split(value) -> List[str]:
    return [part.strip() for part in _cell_text(value).split(",") if part.strip()]


def _question_type(value) -> QuestionType:
    label = _cell_text(value).lower()
    if not label:
        return QuestionType.TEXT
    if label not in TYPE_ALIASES:
        raise ValidationError(f"Unknown question type '{_cell_text(value)}'")
    return TYPE_ALIASES[label]


def _options(question_type: QuestionType, value):
    raw = _cell_text(value)
    if not raw:
        return None
    if question_type == QuestionType.LIST_TABLE:
        # Table layouts are written as the column JSON
        try:
            return json.loads(raw)
        except ValueError:
            raise ValidationError("Table columns must be JSON")
    return _split(raw)


def parse_row(values, mapping: Dict[int, str]) -> Optional[_Row]:
    """Turn one sheet row into question fields; None for a row without text."""
    fields = {name: values[index] if index < len(values) else None for index, name in mapping.items()}
    text = _cell_text(fields.get("text"))
    if not text:
        return None

    question_type = _question_type(fields.get("type"))
    required = fields.get("required")
    if isinstance(required, bool):
        required_flag = required
    else:
        required_flag = _cell_text(required).lower() in TRUE_WORDS

    options = validate_options(question_type, _options(question_type, fields.get("options")))
    section = _cell_text(fields.get("section")) or None
    subsection = _cell_text(fields.get("subsection")) or None
    if subsection and not section:
        raise ValidationError(f"Subsection '{subsection}' needs a section")

    return _Row(
        text=text,
        type=question_type,
        required=required_flag,
        options=options,
        description=_cell_text(fields.get("description")) or None,
        section=section,
        subsection=subsection,
        tags=_split(fields.get("tags")),
    )


def read_sheet(data: bytes, sheet: Optional[str] = None) -> Tuple[str, list]:
    """Rows of the named sheet (first sheet by default) as tuples of cell values."""
    try:
        workbook = load_workbook(BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError):
        raise ValidationError("File is not a readable Excel workbook")
    try:
        name = sheet or workbook.sheetnames[0]
        if name not in workbook.sheetnames:
            raise ValidationError(f"Sheet '{name}' not found", sheets=workbook.sheetnames)
        rows = [tuple(row) for row in workbook[name].iter_rows(values_only=True)]
    finally:
        workbook.close()
    return name, rows


class _Catalog:
    """Case-insensitive lookup of existing sections and tags, creating on a miss."""

    def __init__(self, db: Session, result: ImportResult):
        self.db = db
        self.result = result
        self.sections: Dict[Tuple[Optional[int], str], QuestionSection] = {
            (s.parent_id, s.name.lower()): s for s in question_bank.list_sections(db)
        }
        self.tags: Dict[str, Tag] = {t.name.lower(): t for t in db.query(Tag).all()}

    def section(self, name: str, parent_id: Optional[int] = None) -> QuestionSection:
        key = (parent_id, name.lower())
        if key not in self.sections:
            self.sections[key] = question_bank.create_section(self.db, name=name, parent_id=parent_id)
            self.result.sections_created += 1
        return self.sections[key]

    def tag(self, name: str) -> Tag:
        if name.lower() not in self.tags:
            self.tags[name.lower()] = question_bank.create_tag(self.db, name=name)
            self.result.tags_created += 1
        return self.tags[name.lower()]


def import_questions(db: Session, data: bytes, sheet: Optional[str] = None) -> ImportResult:
    """
    Create questions from an Excel workbook.

    Rows without question text are skipped. Rows that fail validation are
    listed in ``errors`` with their sheet row number; the rest are imported.
    Raises ``ValidationError`` when the workbook or its header row is unusable.
    """
    name, rows = read_sheet(data, sheet)
    if len(rows) < 2:
        raise ValidationError(f"No questions found in sheet '{name}'")

    mapping = map_headers(rows[0])
    result = ImportResult(sheet=name)
    catalog = _Catalog(db, result)

    # Sheet rows are 1-based and row 1 is the header
    for number, values in enumerate(rows[1:], start=2):
        try:
            row = parse_row(values, mapping)
        except ValidationError as exc:
            result.errors.append({"row": number, "message": exc.message})
            continue
        if row is None:
            result.skipped += 1
            continue

        section_id = None
        if row.section:
            section_id = catalog.section(row.section).id
            if row.subsection:
                section_id = catalog.section(row.subsection, parent_id=section_id).id

        question = question_bank.create_question(
            db,
            text=row.text,
            type=row.type,
            required=row.required,
            description=row.description,
            options=row.options,
            section_id=section_id,
            tag_ids=[catalog.tag(t).id for t in row.tags],
        )
        result.created.append(question.id)

    logger.info(
        f"Imported {len(result.created)} question(s) from sheet '{name}' "
        f"({len(result.errors)} rejected, {result.skipped} blank)"
    )
    return result
