"""
Demo data: two trading partners and a small question bank.

Only runs when SEED_DEMO=true (which the settings refuse outside DEBUG).
"""
from app.core.logging import get_logger
from app.db.session import get_db_context
from app.db.models import (
    Company, CompanyRelationship, CompanyRole, CompanyUser, Product, QuestionType, RelationshipStatus,
)
from app.services import question_bank

logger = get_logger(__name__)

DEMO_CUSTOMER_USER_ID = 1
DEMO_SUPPLIER_USER_ID = 2

SUBSTANCE_TABLE = [
    {"name": "Substance", "type": "text"},
    {"name": "CAS number", "type": "text"},
    {
        "name": "Concentration",
        "type": "text",
        "nested": True,
        "nestedColumns": [
            {"name": "Value", "type": "number"},
            {"name": "Unit", "type": "select", "options": ["%", "ppm", "mg/kg"]},
        ],
    },
    {"name": "Above threshold", "type": "boolean"},
]


def _seed_question_bank(db):
    reach = question_bank.create_tag(db, "REACH", "EU REACH regulation (EC 1907/2006)")
    rohs = question_bank.create_tag(db, "RoHS", "Restriction of Hazardous Substances")
    packaging = question_bank.create_tag(db, "Packaging", "Packaging and packaging waste")

    general = question_bank.create_section(db, "General Information", "Supplier and product identification")
    composition = question_bank.create_section(db, "Composition")
    substances = question_bank.create_section(db, "Substances of Concern", parent_id=composition.id)
    pack = question_bank.create_section(db, "Packaging Materials", parent_id=composition.id)

    all_tags = [reach.id, rohs.id, packaging.id]
    question_bank.create_question(
        db, "Manufacturer name", QuestionType.TEXT, required=True,
        section_id=general.id, tag_ids=all_tags,
    )
    question_bank.create_question(
        db, "Country of origin", QuestionType.SINGLE_SELECT, required=True,
        options=["Germany", "France", "United States", "China", "Other"],
        section_id=general.id, tag_ids=all_tags,
    )
    question_bank.create_question(
        db, "Date of last compliance assessment", QuestionType.DATE,
        section_id=general.id, tag_ids=[reach.id, rohs.id],
    )
    question_bank.create_question(
        db, "Does the product contain SVHC above 0.1% w/w?", QuestionType.BOOLEAN, required=True,
        section_id=substances.id, tag_ids=[reach.id],
    )
    question_bank.create_question(
        db, "List substances of very high concern", QuestionType.LIST_TABLE,
        description="One row per substance",
        options=SUBSTANCE_TABLE, section_id=substances.id, tag_ids=[reach.id],
    )
    question_bank.create_question(
        db, "Which RoHS substances are present?", QuestionType.MULTI_SELECT,
        options=["Lead", "Mercury", "Cadmium", "Hexavalent chromium", "PBB", "PBDE"],
        section_id=substances.id, tag_ids=[rohs.id],
    )
    question_bank.create_question(
        db, "Packaging components and materials", QuestionType.COMPONENT_MATERIAL_LIST, required=True,
        section_id=pack.id, tag_ids=[packaging.id],
    )
    question_bank.create_question(
        db, "Total packaging weight (g)", QuestionType.NUMBER,
        section_id=pack.id, tag_ids=[packaging.id],
    )
    question_bank.create_question(
        db, "Safety data sheet", QuestionType.FILE,
        tag_ids=[reach.id],
    )


def seed_demo_data():
    """Seed demo companies and question bank unless data already exists."""
    with get_db_context() as db:
        if db.query(Company).first():
            logger.info("Database already seeded. Skipping...")
            return

        logger.info("Seeding demo data...")
        customer = Company(
            name="Acme Foods", role=CompanyRole.CUSTOMER,
            contact_name="Quality Team", contact_email="quality@acmefoods.test", country="Germany",
        )
        supplier = Company(
            name="PackRight Supplies", role=CompanyRole.SUPPLIER,
            contact_name="Compliance Desk", contact_email="compliance@packright.test", country="France",
        )
        db.add_all([customer, supplier])
        db.flush()

        db.add_all([
            CompanyRelationship(customer_id=customer.id, supplier_id=supplier.id, status=RelationshipStatus.ACTIVE),
            CompanyUser(company_id=customer.id, user_id=DEMO_CUSTOMER_USER_ID,
                        email="reviewer@acmefoods.test", full_name="Rita Reviewer", role="owner"),
            CompanyUser(company_id=supplier.id, user_id=DEMO_SUPPLIER_USER_ID,
                        email="answers@packright.test", full_name="Sam Supplier", role="owner"),
            Product(supplier_company_id=supplier.id, name="Recycled PET tray",
                    description="Food-contact tray, 250 x 180 mm"),
            Product(supplier_company_id=supplier.id, name="Corrugated shipper box"),
        ])
        _seed_question_bank(db)
        logger.info(f"Seeded demo customer {customer.id} and supplier {supplier.id}")
