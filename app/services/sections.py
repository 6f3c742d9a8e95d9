"""
Section hierarchy and hierarchical numbering of questions.

Sections form a two-level tree (section -> subsection). Within a parent,
siblings are ordered by ``(order, name, id)`` and numbered by their position,
so gaps or ties in ``order`` never produce duplicate numbers. Questions are
numbered ``<section>.<k>`` or ``<section>.<subsection>.<k>``; questions with no
section are collected in a trailing "General Questions" group.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from app.core.errors import ValidationError
from app.core.logging import get_logger

logger = get_logger(__name__)

UNSECTIONED_NAME = "General Questions"


def _section_key(section):
    return (section.order or 0, (section.name or "").lower(), section.id)


def _question_key(question):
    return (question.order_index or 0, question.id)


@dataclass
class SectionNode:
    section: object
    number: str
    children: List["SectionNode"] = field(default_factory=list)


@dataclass
class QuestionGroup:
    """Questions sharing one section or subsection, in display order."""

    number: str
    name: str
    section_id: Optional[int]
    parent_id: Optional[int]
    questions: List[object] = field(default_factory=list)


def build_tree(sections: Iterable) -> List[SectionNode]:
    """Top-level sections with their subsections, ordered and numbered."""
    by_parent = defaultdict(list)
    for section in sections:
        by_parent[section.parent_id].append(section)

    top_ids = {s.id for s in by_parent[None]}
    for parent_id, children in by_parent.items():
        if parent_id is not None and parent_id not in top_ids:
            logger.warning(
                f"Ignoring {len(children)} section(s) under {parent_id}: parent is not a top-level section"
            )

    tree = []
    for i, top in enumerate(sorted(by_parent[None], key=_section_key), start=1):
        node = SectionNode(section=top, number=str(i))
        for j, sub in enumerate(sorted(by_parent[top.id], key=_section_key), start=1):
            node.children.append(SectionNode(section=sub, number=f"{i}.{j}"))
        tree.append(node)
    return tree


def number_sections(sections: Iterable) -> Dict[int, str]:
    numbers = {}
    for node in build_tree(sections):
        numbers[node.section.id] = node.number
        for child in node.children:
            numbers[child.section.id] = child.number
    return numbers


def group_questions(sections: Sequence, questions: Iterable) -> List[QuestionGroup]:
    """
    Group questions by their section in display order.

    Questions placed directly on a top-level section come before that
    section's subsections. Empty groups are omitted.
    """
    tree = build_tree(sections)
    by_section = defaultdict(list)
    for question in questions:
        by_section[question.section_id].append(question)

    groups = []
    placed = set()
    for node in tree:
        candidates = [(node, None)] + [(child, node.section.id) for child in node.children]
        for section_node, parent_id in candidates:
            section_questions = sorted(by_section.get(section_node.section.id, []), key=_question_key)
            placed.add(section_node.section.id)
            if section_questions:
                groups.append(QuestionGroup(
                    number=section_node.number,
                    name=section_node.section.name,
                    section_id=section_node.section.id,
                    parent_id=parent_id,
                    questions=section_questions,
                ))

    # Unsectioned questions, plus any attached to sections outside the tree
    leftover = [q for sid, qs in by_section.items() if sid not in placed for q in qs]
    if leftover:
        groups.append(QuestionGroup(
            number=str(len(tree) + 1),
            name=UNSECTIONED_NAME,
            section_id=None,
            parent_id=None,
            questions=sorted(leftover, key=_question_key),
        ))
    return groups


def number_questions(sections: Sequence, questions: Iterable) -> Dict[int, str]:
    """Map question id to its hierarchical number, e.g. ``"2.1.3"``."""
    numbers = {}
    for group in group_questions(sections, questions):
        for k, question in enumerate(group.questions, start=1):
            numbers[question.id] = f"{group.number}.{k}"
    return numbers


def order_questions(sections: Sequence, questions: Iterable) -> List:
    return [q for group in group_questions(sections, questions) for q in group.questions]


def _number_sort_key(number: str) -> Tuple[int, ...]:
    return tuple(int(part) for part in number.split("."))


def sort_by_number(items: Iterable, numbers: Dict[int, str], key=lambda item: item.id) -> List:
    """Sort arbitrary items by the number assigned to their question id."""
    return sorted(items, key=lambda item: _number_sort_key(numbers.get(key(item), "999999")))


def validate_parent(sections_by_id: Dict[int, object], parent_id: Optional[int], section_id: Optional[int] = None):
    """
    Check that ``parent_id`` is a legal parent for ``section_id``.

    Only top-level sections can be parents, a section cannot be its own
    parent, and a section that already has subsections cannot become one.
    """
    if parent_id is None:
        return
    parent = sections_by_id.get(parent_id)
    if parent is None:
        raise ValidationError(f"Parent section {parent_id} does not exist")
    if parent.parent_id is not None:
        raise ValidationError("Subsections cannot contain further subsections")
    if section_id is not None:
        if parent_id == section_id:
            raise ValidationError("A section cannot be its own parent")
        if any(s.parent_id == section_id for s in sections_by_id.values()):
            raise ValidationError("A section with subsections cannot become a subsection")
