"""
Components and materials of a component/material list answer.

Components belong to one response and are ordered by ``order_index``; a new
component is appended at the current count, and deletes leave gaps. Materials
belong to one component and are removed with it.
"""
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.errors import LockedError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.db.models import (
    PIRResponse, PIRResponseComponent, PIRResponseComponentMaterial, QuestionType, ResponseStatus,
)
from app.services import pir_lifecycle

logger = get_logger(__name__)

_UNSET = object()


def parse_recyclable(value) -> bool:
    """Accept a boolean or the legacy ``"true"``/``"false"`` strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValidationError("recyclable must be true or false")


def recyclable_to_wire(value: bool) -> str:
    return "true" if value else "false"


def parse_percentage(value) -> Optional[float]:
    """Optional share of the component, 0 to 100 inclusive."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError("percentage must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError("percentage must be a number")
    if not 0 <= number <= 100:
        raise ValidationError(f"percentage must be between 0 and 100 (got {number:g})")
    return number


def _required_name(value, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required")
    return value.strip()


def ensure_component_response(response: PIRResponse):
    """Components only hang off component/material list answers."""
    if QuestionType(response.question.type) != QuestionType.COMPONENT_MATERIAL_LIST:
        raise ValidationError(f"Question {response.question_id} does not take components")


def ensure_components_editable(response: PIRResponse):
    ensure_component_response(response)
    pir_lifecycle.ensure_editable_by_supplier(response.pir)
    if ResponseStatus(response.status) == ResponseStatus.APPROVED:
        raise LockedError(f"Response {response.id} is approved and can no longer be changed")


# ============= COMPONENTS =============

def list_components(db: Session, response_id: int) -> List[PIRResponseComponent]:
    return db.query(PIRResponseComponent).filter(
        PIRResponseComponent.pir_response_id == response_id
    ).order_by(PIRResponseComponent.order_index, PIRResponseComponent.id).all()


def get_component(db: Session, component_id: int) -> PIRResponseComponent:
    component = db.query(PIRResponseComponent).filter(PIRResponseComponent.id == component_id).first()
    if component is None:
        raise NotFoundError(f"Component {component_id} not found")
    return component


def add_component(db: Session, response: PIRResponse, component_name: str,
                  position: Optional[str] = None) -> PIRResponseComponent:
    ensure_components_editable(response)
    name = _required_name(component_name, "Component name")
    count = db.query(PIRResponseComponent).filter(
        PIRResponseComponent.pir_response_id == response.id
    ).count()
    component = PIRResponseComponent(
        pir_response_id=response.id,
        component_name=name,
        position=(position or "").strip() or None,
        order_index=count,
    )
    db.add(component)
    db.flush()
    logger.info(f"Added component {component.id} to response {response.id}")
    return component


def update_component(db: Session, component: PIRResponseComponent,
                     component_name=_UNSET, position=_UNSET) -> PIRResponseComponent:
    ensure_components_editable(component.response)
    if component_name is not _UNSET:
        component.component_name = _required_name(component_name, "Component name")
    if position is not _UNSET:
        component.position = (position or "").strip() or None
    db.flush()
    return component


def delete_component(db: Session, component: PIRResponseComponent,
                     selected_component_id: Optional[int] = None) -> bool:
    """
    Delete ``component`` and its materials.

    Returns True when ``selected_component_id`` pointed at the deleted
    component, i.e. the caller's selection must be cleared.
    """
    ensure_components_editable(component.response)
    component_id = component.id
    db.delete(component)
    db.flush()
    logger.info(f"Deleted component {component_id}")
    return selected_component_id == component_id


# ============= MATERIALS =============

def list_materials(db: Session, component_id: int) -> List[PIRResponseComponentMaterial]:
    return db.query(PIRResponseComponentMaterial).filter(
        PIRResponseComponentMaterial.component_id == component_id
    ).order_by(PIRResponseComponentMaterial.order_index, PIRResponseComponentMaterial.id).all()


def get_material(db: Session, material_id: int) -> PIRResponseComponentMaterial:
    material = db.query(PIRResponseComponentMaterial).filter(
        PIRResponseComponentMaterial.id == material_id
    ).first()
    if material is None:
        raise NotFoundError(f"Material {material_id} not found")
    return material


def add_material(db: Session, component: PIRResponseComponent, material_name: str,
                 percentage=None, recyclable=False) -> PIRResponseComponentMaterial:
    ensure_components_editable(component.response)
    material = PIRResponseComponentMaterial(
        component_id=component.id,
        material_name=_required_name(material_name, "Material name"),
        percentage=parse_percentage(percentage),
        recyclable=parse_recyclable(recyclable),
        order_index=db.query(PIRResponseComponentMaterial).filter(
            PIRResponseComponentMaterial.component_id == component.id
        ).count(),
    )
    db.add(material)
    db.flush()
    return material


def update_material(db: Session, material: PIRResponseComponentMaterial,
                    material_name=_UNSET, percentage=_UNSET, recyclable=_UNSET) -> PIRResponseComponentMaterial:
    ensure_components_editable(material.component.response)
    if material_name is not _UNSET:
        material.material_name = _required_name(material_name, "Material name")
    if percentage is not _UNSET:
        material.percentage = parse_percentage(percentage)
    if recyclable is not _UNSET:
        material.recyclable = parse_recyclable(recyclable)
    db.flush()
    return material


def delete_material(db: Session, material: PIRResponseComponentMaterial):
    ensure_components_editable(material.component.response)
    db.delete(material)
    db.flush()
