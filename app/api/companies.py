"""
Company API routes: the acting company, its trading partners and products.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import Company, CompanyRelationship, Product, RelationshipStatus
from app.core.rbac import RequestContext, get_request_context, require_reader
from app.core.security import get_role_value

router = APIRouter(prefix="/api/companies", tags=["Companies"])


# ============= SCHEMAS =============

class CompanyResponse(BaseModel):
    id: int
    name: str
    role: str
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    country: Optional[str] = None


class PartnerResponse(CompanyResponse):
    relationship_status: str


class ProductResponse(BaseModel):
    id: int
    supplier_company_id: int
    name: str
    description: Optional[str] = None

    model_config = {"from_attributes": True}


def _company_dict(company: Company) -> dict:
    return {
        "id": company.id,
        "name": company.name,
        "role": get_role_value(company.role),
        "contact_name": company.contact_name,
        "contact_email": company.contact_email,
        "country": company.country,
    }


def related_company_ids(db: Session, company_id: int, as_customer: bool) -> List[int]:
    """Active partners: suppliers of ``company_id``, or its customers."""
    if as_customer:
        column, other = CompanyRelationship.customer_id, CompanyRelationship.supplier_id
    else:
        column, other = CompanyRelationship.supplier_id, CompanyRelationship.customer_id
    rows = db.query(other).filter(
        column == company_id,
        CompanyRelationship.status == RelationshipStatus.ACTIVE,
    ).all()
    return [r[0] for r in rows]


# ============= ROUTES =============

@router.get("/current")
async def get_current_company(
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Get the acting company with the caller's role and permissions."""
    company = db.query(Company).filter(Company.id == ctx.company_id).first()
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    return {
        **_company_dict(company),
        "user_role": ctx.role.value,
        "permissions": sorted(ctx.permissions),
    }


def _partners(db: Session, company_id: int, as_customer: bool) -> List[dict]:
    column = CompanyRelationship.supplier_id if as_customer else CompanyRelationship.customer_id
    own = CompanyRelationship.customer_id if as_customer else CompanyRelationship.supplier_id
    rows = (
        db.query(Company, CompanyRelationship.status)
        .join(CompanyRelationship, column == Company.id)
        .filter(own == company_id)
        .order_by(Company.name)
        .all()
    )
    return [
        {**_company_dict(company), "relationship_status": get_role_value(status)}
        for company, status in rows
    ]


@router.get("/current/suppliers", response_model=List[PartnerResponse])
async def list_suppliers(
    ctx: RequestContext = Depends(require_reader),
    db: Session = Depends(get_db)
):
    """Suppliers the current company requests information from."""
    return _partners(db, ctx.company_id, as_customer=True)


@router.get("/current/customers", response_model=List[PartnerResponse])
async def list_customers(
    ctx: RequestContext = Depends(require_reader),
    db: Session = Depends(get_db)
):
    """Customers the current company answers requests for."""
    return _partners(db, ctx.company_id, as_customer=False)


@router.get("/{company_id}/products", response_model=List[ProductResponse])
async def list_products(
    company_id: int,
    ctx: RequestContext = Depends(require_reader),
    db: Session = Depends(get_db)
):
    """Products of the current company or of one of its suppliers."""
    if company_id != ctx.company_id:
        linked = db.query(CompanyRelationship).filter(
            or_(
                (CompanyRelationship.customer_id == ctx.company_id) & (CompanyRelationship.supplier_id == company_id),
                (CompanyRelationship.supplier_id == ctx.company_id) & (CompanyRelationship.customer_id == company_id),
            )
        ).first()
        if not linked:
            raise HTTPException(status_code=404, detail="Company not found")
    products = db.query(Product).filter(
        Product.supplier_company_id == company_id
    ).order_by(Product.name).all()
    return [ProductResponse.model_validate(p) for p in products]
