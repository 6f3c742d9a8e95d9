"""
Shared fixtures: an in-memory database, two trading partners with a small
question bank, and an API client with notifications captured in memory.
"""
import os

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789abcdef0123456789")
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ.setdefault("NOTIFICATIONS_ENABLED", "true")

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from app.core.rbac import RequestContext, Role, permissions_for
from app.core.security import create_access_token
from app.db import models  # noqa - register tables
from app.db.models import (
    Company, CompanyRelationship, CompanyRole, CompanyUser, PIRRequest, PIRStatus, Product,
    QuestionType, RelationshipStatus,
)
from app.db.session import Base, SessionLocal, engine
from app.main import app
from app.services import question_bank
from app.services.notifications import NotificationDispatcher, get_notifier

CUSTOMER_USER = 1
SUPPLIER_USER = 2
OUTSIDER_USER = 3

SUBSTANCE_COLUMNS = [
    {"name": "Substance", "type": "text"},
    {
        "name": "Concentration",
        "type": "text",
        "nested": True,
        "nestedColumns": [
            {"name": "Value", "type": "number"},
            {"name": "Unit", "type": "select", "options": ["%", "ppm"]},
        ],
    },
]


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def world(db):
    """Customer, supplier and an unrelated company, plus the question bank."""
    customer = Company(name="Acme Foods", role=CompanyRole.CUSTOMER, contact_email="quality@acme.test")
    supplier = Company(name="PackRight Supplies", role=CompanyRole.SUPPLIER,
                       contact_email="compliance@packright.test")
    outsider = Company(name="Elsewhere Ltd", role=CompanyRole.BOTH)
    db.add_all([customer, supplier, outsider])
    db.flush()

    product = Product(supplier_company_id=supplier.id, name="Recycled PET tray")
    db.add_all([
        CompanyRelationship(customer_id=customer.id, supplier_id=supplier.id, status=RelationshipStatus.ACTIVE),
        CompanyUser(company_id=customer.id, user_id=CUSTOMER_USER, email="rita@acme.test",
                    full_name="Rita Reviewer", role="owner"),
        CompanyUser(company_id=supplier.id, user_id=SUPPLIER_USER, email="sam@packright.test",
                    full_name="Sam Supplier", role="owner"),
        CompanyUser(company_id=outsider.id, user_id=OUTSIDER_USER, email="olly@elsewhere.test",
                    full_name="Olly Outsider", role="owner"),
        product,
    ])

    reach = question_bank.create_tag(db, "REACH")
    packaging = question_bank.create_tag(db, "Packaging")
    general = question_bank.create_section(db, "General Information")
    composition = question_bank.create_section(db, "Composition")
    substances = question_bank.create_section(db, "Substances of Concern", parent_id=composition.id)

    q_name = question_bank.create_question(
        db, "Manufacturer name", QuestionType.TEXT, required=True,
        section_id=general.id, tag_ids=[reach.id],
    )
    q_svhc = question_bank.create_question(
        db, "Does the product contain SVHC above 0.1% w/w?", QuestionType.BOOLEAN, required=True,
        section_id=substances.id, tag_ids=[reach.id],
    )
    q_table = question_bank.create_question(
        db, "List substances of very high concern", QuestionType.LIST_TABLE,
        options=SUBSTANCE_COLUMNS, section_id=substances.id, tag_ids=[reach.id],
    )
    q_components = question_bank.create_question(
        db, "Packaging components and materials", QuestionType.COMPONENT_MATERIAL_LIST,
        section_id=composition.id, tag_ids=[packaging.id],
    )
    db.commit()

    return SimpleNamespace(
        customer=customer, supplier=supplier, outsider=outsider, product=product,
        reach=reach, packaging=packaging,
        general=general, composition=composition, substances=substances,
        q_name=q_name, q_svhc=q_svhc, q_table=q_table, q_components=q_components,
    )


def make_context(user_id: int, company_id: int, role: Role = Role.OWNER, is_admin: bool = False) -> RequestContext:
    metadata = {"full_name": f"User {user_id}", "is_admin": is_admin}
    return RequestContext(
        user_id=user_id,
        email=f"user{user_id}@example.test",
        company_id=company_id,
        role=role,
        user_metadata=metadata,
        permissions=permissions_for(role, metadata),
    )


@pytest.fixture
def context_factory():
    return make_context


@pytest.fixture
def customer_ctx(world):
    return make_context(CUSTOMER_USER, world.customer.id)


@pytest.fixture
def supplier_ctx(world):
    return make_context(SUPPLIER_USER, world.supplier.id)


@pytest.fixture
def pir_factory(db, world):
    """Create a PIR from the customer to the supplier, committed."""
    def make(tags=None, status=PIRStatus.SENT, **fields) -> PIRRequest:
        pir = PIRRequest(
            customer_id=world.customer.id,
            supplier_company_id=world.supplier.id,
            status=status,
            title=fields.pop("title", "REACH declaration"),
            suggested_product_name=fields.pop("suggested_product_name", "PET tray"),
            created_by=CUSTOMER_USER,
            **fields,
        )
        pir.tags = tags if tags is not None else [world.reach]
        db.add(pir)
        db.commit()
        return pir
    return make


# ============= API =============

@pytest.fixture
def sent_notifications():
    return []


@pytest.fixture
def client(sent_notifications):
    notifier = NotificationDispatcher(enqueue=sent_notifications.append, enabled=True)
    app.dependency_overrides[get_notifier] = lambda: notifier
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def auth_headers(user_id: int, company_id: int, is_admin: bool = False) -> dict:
    token = create_access_token({
        "sub": str(user_id),
        "email": f"user{user_id}@example.test",
        "user_metadata": {"full_name": f"User {user_id}", "is_admin": is_admin},
    })
    return {"Authorization": f"Bearer {token}", "X-Company-Id": str(company_id)}


@pytest.fixture
def headers_factory():
    return auth_headers


@pytest.fixture
def customer_headers(world):
    return auth_headers(CUSTOMER_USER, world.customer.id, is_admin=True)


@pytest.fixture
def supplier_headers(world):
    return auth_headers(SUPPLIER_USER, world.supplier.id)


@pytest.fixture
def outsider_headers(world):
    return auth_headers(OUTSIDER_USER, world.outsider.id)
