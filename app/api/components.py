"""
Component/material API routes for component/material list answers.
"""
from typing import Optional, Union
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.audit import add_audit_log
from app.core.errors import ValidationError
from app.core.rbac import RequestContext, require_reader, require_responder
from app.db.models import PIRResponseComponent, PIRResponseComponentMaterial, PIRStatus, QuestionType
from app.db.session import get_db
from app.services import components as component_service
from app.services import pir_lifecycle, responses as response_service

router = APIRouter(prefix="/api", tags=["Components"])


# ============= SCHEMAS =============

class ComponentCreate(BaseModel):
    component_name: str
    position: Optional[str] = None


class ComponentUpdate(BaseModel):
    component_name: Optional[str] = None
    position: Optional[str] = None


class MaterialCreate(BaseModel):
    material_name: str
    percentage: Optional[Union[float, str]] = None
    recyclable: Union[bool, str] = False


class MaterialUpdate(BaseModel):
    material_name: Optional[str] = None
    percentage: Optional[Union[float, str]] = None
    recyclable: Optional[Union[bool, str]] = None


def material_dict(material: PIRResponseComponentMaterial) -> dict:
    return {
        "id": material.id,
        "component_id": material.component_id,
        "material_name": material.material_name,
        "percentage": material.percentage,
        "recyclable": material.recyclable,
        "recyclable_label": component_service.recyclable_to_wire(material.recyclable),
        "order_index": material.order_index,
    }


def component_dict(component: PIRResponseComponent, with_materials: bool = True) -> dict:
    data = {
        "id": component.id,
        "pir_response_id": component.pir_response_id,
        "component_name": component.component_name,
        "position": component.position,
        "order_index": component.order_index,
    }
    if with_materials:
        data["materials"] = [material_dict(m) for m in component.materials]
    return data


def _require_confirmation(confirm: bool, what: str):
    if not confirm:
        raise ValidationError(f"Deleting {what} must be confirmed (confirm=true)")


def _component_for(db: Session, component_id: int, ctx: RequestContext, side: Optional[str] = None):
    component = component_service.get_component(db, component_id)
    pir_lifecycle.get_accessible_pir(db, component.response.pir_id, ctx, side=side)
    return component


def _material_for(db: Session, material_id: int, ctx: RequestContext, side: Optional[str] = None):
    material = component_service.get_material(db, material_id)
    pir_lifecycle.get_accessible_pir(db, material.component.response.pir_id, ctx, side=side)
    return material


# ============= COMPONENTS =============

@router.get("/pirs/{pir_id}/responses/{question_id}/components")
async def list_components(
    pir_id: int,
    question_id: int,
    ctx: RequestContext = Depends(require_reader),
    db: Session = Depends(get_db)
):
    """
    Components of a component/material list answer.

    When the supplier opens an editable PIR the parent response row is
    created on first access so components have a stable parent.
    """
    pir = pir_lifecycle.get_accessible_pir(db, pir_id, ctx)
    question = response_service.get_pir_question(db, pir, question_id)
    if QuestionType(question.type) != QuestionType.COMPONENT_MATERIAL_LIST:
        raise ValidationError(f"Question {question_id} does not take components")

    supplier_editing = (
        ctx.company_id == pir.supplier_company_id
        and PIRStatus(pir.status) in pir_lifecycle.SUPPLIER_EDITABLE_STATUSES
    )
    if supplier_editing:
        response, _ = response_service.ensure_placeholder_response(db, pir.id, question.id)
        db.commit()
    else:
        response = response_service.find_response(db, pir.id, question.id)
    if response is None:
        return {"response_id": None, "components": []}
    return {
        "response_id": response.id,
        "components": [component_dict(c) for c in component_service.list_components(db, response.id)],
    }


@router.post("/pirs/{pir_id}/responses/{question_id}/components", status_code=201)
async def add_component(
    pir_id: int,
    question_id: int,
    request: Request,
    data: ComponentCreate,
    ctx: RequestContext = Depends(require_responder),
    db: Session = Depends(get_db)
):
    pir = pir_lifecycle.get_accessible_pir(db, pir_id, ctx, side="supplier")
    question = response_service.get_pir_question(db, pir, question_id)
    pir_lifecycle.ensure_editable_by_supplier(pir)
    response, _ = response_service.ensure_placeholder_response(db, pir.id, question.id)
    component = component_service.add_component(db, response, data.component_name, data.position)
    pir_lifecycle.mark_in_progress(pir)
    add_audit_log(
        db, request, ctx, "add_component", "pir_response_component", component.id,
        {"response_id": response.id, "component_name": component.component_name},
    )
    db.commit()
    db.refresh(component)
    return {"message": "Component added", "component": component_dict(component)}


@router.put("/components/{component_id}")
async def update_component(
    component_id: int,
    request: Request,
    data: ComponentUpdate,
    ctx: RequestContext = Depends(require_responder),
    db: Session = Depends(get_db)
):
    component = _component_for(db, component_id, ctx, side="supplier")
    changes = data.model_dump(exclude_unset=True)
    component_service.update_component(db, component, **changes)
    add_audit_log(db, request, ctx, "update_component", "pir_response_component", component.id, changes)
    db.commit()
    db.refresh(component)
    return {"message": "Component updated", "component": component_dict(component)}


@router.delete("/components/{component_id}")
async def delete_component(
    component_id: int,
    request: Request,
    confirm: bool = Query(False, description="Must be true; deletes the component and its materials"),
    selected_component_id: Optional[int] = Query(None, description="Component currently selected by the caller"),
    ctx: RequestContext = Depends(require_responder),
    db: Session = Depends(get_db)
):
    _require_confirmation(confirm, "a component")
    component = _component_for(db, component_id, ctx, side="supplier")
    details = {"response_id": component.pir_response_id, "component_name": component.component_name}
    clear_selection = component_service.delete_component(db, component, selected_component_id)
    add_audit_log(db, request, ctx, "delete_component", "pir_response_component", component_id, details)
    db.commit()
    return {"message": "Component deleted", "id": component_id, "clear_selection": clear_selection}


# ============= MATERIALS =============

@router.get("/components/{component_id}/materials")
async def list_materials(
    component_id: int,
    ctx: RequestContext = Depends(require_reader),
    db: Session = Depends(get_db)
):
    component = _component_for(db, component_id, ctx)
    return [material_dict(m) for m in component_service.list_materials(db, component.id)]


@router.post("/components/{component_id}/materials", status_code=201)
async def add_material(
    component_id: int,
    request: Request,
    data: MaterialCreate,
    ctx: RequestContext = Depends(require_responder),
    db: Session = Depends(get_db)
):
    component = _component_for(db, component_id, ctx, side="supplier")
    material = component_service.add_material(
        db, component, data.material_name, percentage=data.percentage, recyclable=data.recyclable,
    )
    add_audit_log(
        db, request, ctx, "add_material", "pir_response_component_material", material.id,
        {"component_id": component.id, "material_name": material.material_name},
    )
    db.commit()
    db.refresh(material)
    return {"message": "Material added", "material": material_dict(material)}


@router.put("/materials/{material_id}")
async def update_material(
    material_id: int,
    request: Request,
    data: MaterialUpdate,
    ctx: RequestContext = Depends(require_responder),
    db: Session = Depends(get_db)
):
    material = _material_for(db, material_id, ctx, side="supplier")
    changes = data.model_dump(exclude_unset=True)
    component_service.update_material(db, material, **changes)
    add_audit_log(
        db, request, ctx, "update_material", "pir_response_component_material", material.id, changes,
    )
    db.commit()
    db.refresh(material)
    return {"message": "Material updated", "material": material_dict(material)}


@router.delete("/materials/{material_id}")
async def delete_material(
    material_id: int,
    request: Request,
    confirm: bool = Query(False, description="Must be true"),
    ctx: RequestContext = Depends(require_responder),
    db: Session = Depends(get_db)
):
    _require_confirmation(confirm, "a material")
    material = _material_for(db, material_id, ctx, side="supplier")
    details = {"component_id": material.component_id, "material_name": material.material_name}
    component_service.delete_material(db, material)
    add_audit_log(db, request, ctx, "delete_material", "pir_response_component_material", material_id, details)
    db.commit()
    return {"message": "Material deleted", "id": material_id}
