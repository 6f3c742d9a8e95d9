"""
Question schema model: question types, option payloads and answer shapes.

List-table questions describe their columns as a recursive tree. Stored JSON
uses the ``{name, type, options?, nested?, nestedColumns?}`` wire format; in
memory a column is either a ``LeafColumn`` or a ``NestedColumn``, so a nested
column without children cannot be represented.

Every per-type concern (option validation, answer validation, display) is a
table keyed by ``QuestionType`` and checked for completeness at import time.
"""
import copy
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from app.core.errors import ValidationError
from app.db.models import QuestionType

LEAF_COLUMN_TYPES = ("text", "number", "boolean", "select")


def check_exhaustive(handlers: Mapping[QuestionType, Any], concern: str) -> None:
    missing = [t.value for t in QuestionType if t not in handlers]
    if missing:
        raise RuntimeError(f"No {concern} handler for question type(s): {', '.join(missing)}")


def dispatch(question_type, handlers: Mapping[QuestionType, Callable], *args, **kwargs):
    """Call the handler registered for ``question_type``."""
    qtype = QuestionType(question_type)
    return handlers[qtype](*args, **kwargs)


# ============= TABLE COLUMNS =============

@dataclass(frozen=True)
class LeafColumn:
    name: str
    type: str = "text"
    options: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NestedColumn:
    name: str
    columns: Tuple["TableColumn", ...]


TableColumn = Union[LeafColumn, NestedColumn]


@dataclass(frozen=True)
class HeaderCell:
    name: str
    path: Tuple[str, ...]
    col_span: int
    row_span: int


def _clean_options(raw, where: str) -> Tuple[str, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, (list, tuple)):
        raise ValidationError(f"{where}: options must be a list of strings")
    cleaned = []
    for item in raw:
        if not isinstance(item, str) or not item.strip():
            raise ValidationError(f"{where}: options must be non-empty strings")
        value = item.strip()
        if value in cleaned:
            raise ValidationError(f"{where}: duplicate option '{value}'")
        cleaned.append(value)
    return tuple(cleaned)


def parse_columns(raw, path: Tuple[str, ...] = ()) -> Tuple[TableColumn, ...]:
    """Parse stored column JSON into the column tree, rejecting malformed definitions."""
    where = "Table column " + ".".join(path) if path else "Table columns"
    if not isinstance(raw, (list, tuple)) or not raw:
        raise ValidationError(f"{where}: at least one column is required")

    columns = []
    seen = set()
    for item in raw:
        if not isinstance(item, dict):
            raise ValidationError(f"{where}: each column must be an object")
        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError(f"{where}: column name is required")
        name = name.strip()
        if name in seen:
            raise ValidationError(f"{where}: duplicate column name '{name}'")
        seen.add(name)

        col_path = path + (name,)
        children = item.get("nestedColumns")
        if item.get("nested") or children:
            if not children:
                raise ValidationError(
                    f"Table column {'.'.join(col_path)}: nested column requires nestedColumns"
                )
            columns.append(NestedColumn(name=name, columns=parse_columns(children, col_path)))
            continue

        col_type = item.get("type") or "text"
        if col_type not in LEAF_COLUMN_TYPES:
            raise ValidationError(
                f"Table column {'.'.join(col_path)}: unknown type '{col_type}'"
            )
        options = _clean_options(item.get("options"), f"Table column {'.'.join(col_path)}")
        if col_type == "select" and not options:
            raise ValidationError(
                f"Table column {'.'.join(col_path)}: select column requires options"
            )
        columns.append(LeafColumn(name=name, type=col_type, options=options if col_type == "select" else ()))
    return tuple(columns)


def dump_columns(columns: Sequence[TableColumn]) -> List[dict]:
    """Column tree back to the stored JSON wire format."""
    dumped = []
    for column in columns:
        if isinstance(column, NestedColumn):
            dumped.append({
                "name": column.name,
                "type": "text",
                "nested": True,
                "nestedColumns": dump_columns(column.columns),
            })
        else:
            entry = {"name": column.name, "type": column.type}
            if column.options:
                entry["options"] = list(column.options)
            dumped.append(entry)
    return dumped


def leaf_count(column: TableColumn) -> int:
    if isinstance(column, NestedColumn):
        return sum(leaf_count(child) for child in column.columns)
    return 1


def column_depth(column: TableColumn) -> int:
    if isinstance(column, NestedColumn):
        return 1 + max(column_depth(child) for child in column.columns)
    return 1


def max_depth(columns: Sequence[TableColumn]) -> int:
    return max((column_depth(c) for c in columns), default=0)


def header_rows(columns: Sequence[TableColumn]) -> List[List[HeaderCell]]:
    """
    Header layout for rendering a list-table.

    Nested headers span their leaf descendants; leaf headers span down to the
    bottom header row.
    """
    depth = max_depth(columns)
    rows: List[List[HeaderCell]] = [[] for _ in range(depth)]

    def walk(cols, level, path):
        for column in cols:
            col_path = path + (column.name,)
            if isinstance(column, NestedColumn):
                rows[level].append(HeaderCell(column.name, col_path, leaf_count(column), 1))
                walk(column.columns, level + 1, col_path)
            else:
                rows[level].append(HeaderCell(column.name, col_path, 1, depth - level))

    walk(columns, 0, ())
    return rows


def leaf_paths(columns: Sequence[TableColumn], path: Tuple[str, ...] = ()) -> List[Tuple[str, ...]]:
    """Paths of the leaf columns in display order (the table body's cell order)."""
    paths = []
    for column in columns:
        col_path = path + (column.name,)
        if isinstance(column, NestedColumn):
            paths.extend(leaf_paths(column.columns, col_path))
        else:
            paths.append(col_path)
    return paths


# ============= TABLE ROWS =============

_LEAF_DEFAULTS = {"text": "", "number": None, "boolean": False, "select": ""}


def empty_row(columns: Sequence[TableColumn]) -> dict:
    row = {}
    for column in columns:
        if isinstance(column, NestedColumn):
            row[column.name] = empty_row(column.columns)
        else:
            row[column.name] = _LEAF_DEFAULTS[column.type]
    return row


def clone_rows(rows: Optional[List[dict]]) -> List[dict]:
    return copy.deepcopy(rows) if rows else []


def add_row(rows: Optional[List[dict]], columns: Sequence[TableColumn]) -> List[dict]:
    new_rows = clone_rows(rows)
    new_rows.append(empty_row(columns))
    return new_rows


def delete_row(rows: Optional[List[dict]], index: int) -> List[dict]:
    new_rows = clone_rows(rows)
    if not 0 <= index < len(new_rows):
        raise ValidationError(f"Row {index} does not exist")
    del new_rows[index]
    return new_rows


def update_cell(rows: Optional[List[dict]], index: int, path: Sequence[str], value) -> List[dict]:
    """Return a copy of ``rows`` with one cell replaced."""
    new_rows = clone_rows(rows)
    if not 0 <= index < len(new_rows):
        raise ValidationError(f"Row {index} does not exist")
    if not path:
        raise ValidationError("Cell path is empty")
    target = new_rows[index]
    for key in path[:-1]:
        target = target.setdefault(key, {})
        if not isinstance(target, dict):
            raise ValidationError(f"Cell path {'.'.join(path)} crosses a leaf column")
    target[path[-1]] = value
    return new_rows


def _validate_leaf(column: LeafColumn, value, where: str):
    if value is None:
        return _LEAF_DEFAULTS[column.type]
    if column.type == "text":
        if not isinstance(value, str):
            raise ValidationError(f"{where}: expected text")
        return value
    if column.type == "number":
        return _coerce_number(value, where)
    if column.type == "boolean":
        if not isinstance(value, bool):
            raise ValidationError(f"{where}: expected true or false")
        return value
    if value != "" and value not in column.options:
        raise ValidationError(f"{where}: '{value}' is not one of {list(column.options)}")
    return value


def validate_row(columns: Sequence[TableColumn], row, where: str) -> dict:
    if not isinstance(row, dict):
        raise ValidationError(f"{where}: row must be an object")
    known = {c.name for c in columns}
    unknown = [k for k in row if k not in known]
    if unknown:
        raise ValidationError(f"{where}: unknown column(s) {unknown}")

    normalized = {}
    for column in columns:
        cell_where = f"{where}.{column.name}"
        value = row.get(column.name)
        if isinstance(column, NestedColumn):
            normalized[column.name] = validate_row(column.columns, value or {}, cell_where)
        else:
            normalized[column.name] = _validate_leaf(column, value, cell_where)
    return normalized


# ============= OPTIONS PER TYPE =============

def _no_options(options):
    if options in (None, [], {}):
        return None
    raise ValidationError("This question type does not take options")


def _select_options(options):
    cleaned = _clean_options(options, "Select question")
    if not cleaned:
        raise ValidationError("Select questions require at least one option")
    return list(cleaned)


def _table_options(options):
    return dump_columns(parse_columns(options))


_OPTION_VALIDATORS: Dict[QuestionType, Callable] = {
    QuestionType.TEXT: _no_options,
    QuestionType.NUMBER: _no_options,
    QuestionType.BOOLEAN: _no_options,
    QuestionType.SINGLE_SELECT: _select_options,
    QuestionType.MULTI_SELECT: _select_options,
    QuestionType.DATE: _no_options,
    QuestionType.FILE: _no_options,
    QuestionType.LIST_TABLE: _table_options,
    QuestionType.COMPONENT_MATERIAL_LIST: _no_options,
}
check_exhaustive(_OPTION_VALIDATORS, "option validation")


def validate_options(question_type, options):
    """Check that ``options`` matches the question type; return the normalized payload."""
    return dispatch(question_type, _OPTION_VALIDATORS, options)


# ============= ANSWERS PER TYPE =============

def _coerce_number(value, where: str = "Answer"):
    if isinstance(value, bool):
        raise ValidationError(f"{where}: expected a number")
    number = None
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            number = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                pass
    # NaN and infinities cannot be stored as JSON
    if isinstance(number, int) or (isinstance(number, float) and math.isfinite(number)):
        return number
    raise ValidationError(f"{where}: expected a number")


def _text_answer(options, value):
    if not isinstance(value, str):
        raise ValidationError("Answer must be text")
    return value


def _number_answer(options, value):
    return _coerce_number(value)


def _boolean_answer(options, value):
    if not isinstance(value, bool):
        raise ValidationError("Answer must be true or false")
    return value


def _single_select_answer(options, value):
    if not isinstance(value, str):
        raise ValidationError("Answer must be one of the options")
    if value not in (options or []):
        raise ValidationError(f"'{value}' is not one of {options}")
    return value


def _multi_select_answer(options, value):
    if not isinstance(value, (list, tuple)):
        raise ValidationError("Answer must be a list of options")
    selected = []
    for item in value:
        if not isinstance(item, str) or item not in (options or []):
            raise ValidationError(f"'{item}' is not one of {options}")
        if item not in selected:
            selected.append(item)
    return selected


def _date_answer(options, value):
    if not isinstance(value, str):
        raise ValidationError("Answer must be a date (YYYY-MM-DD)")
    try:
        if "T" in value:
            stamp = value[:-1] + "+00:00" if value.endswith("Z") else value
            return datetime.fromisoformat(stamp).date().isoformat()
        return date.fromisoformat(value).isoformat()
    except ValueError:
        raise ValidationError(f"'{value}' is not a valid date (YYYY-MM-DD)")


def _file_answer(options, value):
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Answer must be a file reference")
    return value.strip()


def _table_answer(options, value):
    if not isinstance(value, (list, tuple)):
        raise ValidationError("Answer must be a list of rows")
    columns = parse_columns(options)
    return [validate_row(columns, row, f"Row {i + 1}") for i, row in enumerate(value)]


def _component_list_answer(options, value):
    # Components and materials live in their own tables
    if value not in ({}, []):
        raise ValidationError("Component/material answers are stored as components, not in the answer")
    return {}


_ANSWER_VALIDATORS: Dict[QuestionType, Callable] = {
    QuestionType.TEXT: _text_answer,
    QuestionType.NUMBER: _number_answer,
    QuestionType.BOOLEAN: _boolean_answer,
    QuestionType.SINGLE_SELECT: _single_select_answer,
    QuestionType.MULTI_SELECT: _multi_select_answer,
    QuestionType.DATE: _date_answer,
    QuestionType.FILE: _file_answer,
    QuestionType.LIST_TABLE: _table_answer,
    QuestionType.COMPONENT_MATERIAL_LIST: _component_list_answer,
}
check_exhaustive(_ANSWER_VALIDATORS, "answer validation")


def validate_answer(question_type, options, answer):
    """
    Validate an answer against its question and return the normalized value.

    ``None`` means "not answered yet" and is accepted for every type.
    """
    if answer is None:
        return None
    return dispatch(question_type, _ANSWER_VALIDATORS, options, answer)


# ============= DISPLAY =============

def _plain(options, value):
    return str(value)


def _yes_no(options, value):
    return "Yes" if value else "No"


def _joined(options, value):
    return ", ".join(value) if value else "No selection"


def _table_summary(options, value):
    count = len(value or [])
    return f"{count} row" if count == 1 else f"{count} rows"


def _component_summary(options, value):
    return "See components and materials"


_ANSWER_FORMATTERS: Dict[QuestionType, Callable] = {
    QuestionType.TEXT: _plain,
    QuestionType.NUMBER: _plain,
    QuestionType.BOOLEAN: _yes_no,
    QuestionType.SINGLE_SELECT: _plain,
    QuestionType.MULTI_SELECT: _joined,
    QuestionType.DATE: _plain,
    QuestionType.FILE: _plain,
    QuestionType.LIST_TABLE: _table_summary,
    QuestionType.COMPONENT_MATERIAL_LIST: _component_summary,
}
check_exhaustive(_ANSWER_FORMATTERS, "answer display")


def format_answer(question_type, options, answer) -> str:
    if answer is None or answer == "":
        return "No answer provided"
    return dispatch(question_type, _ANSWER_FORMATTERS, options, answer)


def is_answered(question_type, answer) -> bool:
    """Whether a stored answer counts towards completion."""
    qtype = QuestionType(question_type)
    if qtype == QuestionType.COMPONENT_MATERIAL_LIST:
        # Completion is judged on the component rows by the caller
        return False
    if answer is None:
        return False
    if isinstance(answer, (str, list, dict)) and len(answer) == 0:
        return False
    return True
