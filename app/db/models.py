"""
SQLAlchemy ORM models for Compliant Connect.

Ownership tree: a PIR request owns its responses; a response owns its flags,
comments and (for component/material questions) components, which own their
materials. Sections, questions and tags are shared reference data.
"""
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Float,
    ForeignKey, Enum, JSON, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from app.db.session import Base


# ============= ENUMS =============

class CompanyRole(str, enum.Enum):
    SUPPLIER = "supplier"
    CUSTOMER = "customer"
    BOTH = "both"


class RelationshipStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"


class PIRStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    IN_REVIEW = "in_review"
    FLAGGED = "flagged"
    APPROVED = "approved"
    REJECTED = "rejected"
    # Deployment extensions of the same machine
    SENT = "sent"
    IN_PROGRESS = "in_progress"
    RESUBMITTED = "resubmitted"
    CANCELED = "canceled"


class ResponseStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    FLAGGED = "flagged"
    APPROVED = "approved"


class FlagStatus(str, enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class QuestionType(str, enum.Enum):
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    SINGLE_SELECT = "single_select"
    MULTI_SELECT = "multi_select"
    DATE = "date"
    FILE = "file"
    LIST_TABLE = "list_table"
    COMPONENT_MATERIAL_LIST = "component_material_list"


# Store enum values (lowercase), not member names
def enum_values(enum_cls):
    return [e.value for e in enum_cls]


def enum_type(enum_cls, name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=enum_values, validate_strings=True)


CompanyRoleType = enum_type(CompanyRole, "company_role")
RelationshipStatusType = enum_type(RelationshipStatus, "relationship_status")
PIRStatusType = enum_type(PIRStatus, "pir_status")
ResponseStatusType = enum_type(ResponseStatus, "response_status")
FlagStatusType = enum_type(FlagStatus, "flag_status")
QuestionTypeType = enum_type(QuestionType, "question_type")


# ============= COMPANIES =============

class Company(Base):
    """A tenant: customer, supplier, or both."""
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    role = Column(CompanyRoleType, nullable=False, default=CompanyRole.BOTH)
    contact_name = Column(String(255))
    contact_email = Column(String(255))
    contact_phone = Column(String(50))
    country = Column(String(100))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    users = relationship("CompanyUser", back_populates="company", cascade="all, delete-orphan")
    products = relationship("Product", back_populates="supplier")


class CompanyRelationship(Base):
    """A customer's link to one of its suppliers."""
    __tablename__ = "company_relationships"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    supplier_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    status = Column(RelationshipStatusType, nullable=False, default=RelationshipStatus.PENDING)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    customer = relationship("Company", foreign_keys=[customer_id])
    supplier = relationship("Company", foreign_keys=[supplier_id])

    __table_args__ = (
        UniqueConstraint('customer_id', 'supplier_id', name='uq_company_relationship'),
    )


class CompanyUser(Base):
    """Membership of an identity-provider user in a company."""
    __tablename__ = "company_users"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, nullable=False, index=True)  # identity provider user id
    email = Column(String(255))
    full_name = Column(String(255))
    role = Column(String(50), nullable=False, default="member")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    company = relationship("Company", back_populates="users")

    __table_args__ = (
        UniqueConstraint('company_id', 'user_id', name='uq_company_user'),
    )


class Product(Base):
    """Supplier catalog product; approved PIRs link to one."""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    supplier_company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    supplier = relationship("Company", back_populates="products")


# ============= QUESTION BANK =============

class QuestionSection(Base):
    """Section (parent_id null) or subsection of the question bank."""
    __tablename__ = "question_sections"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    order = Column(Integer, nullable=False, default=0)
    parent_id = Column(Integer, ForeignKey("question_sections.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    parent = relationship("QuestionSection", remote_side=[id], back_populates="subsections")
    subsections = relationship("QuestionSection", back_populates="parent")
    questions = relationship("Question", back_populates="section")


class Tag(Base):
    """Regulatory tag; selects the questions that populate a PIR."""
    __tablename__ = "tags"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Question(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    text = Column(Text, nullable=False)
    description = Column(Text)
    type = Column(QuestionTypeType, nullable=False)
    required = Column(Boolean, nullable=False, default=False)
    options = Column(JSON)  # shape depends on type
    section_id = Column(Integer, ForeignKey("question_sections.id"), nullable=True)
    order_index = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    section = relationship("QuestionSection", back_populates="questions")
    tags = relationship("Tag", secondary="question_tags", order_by="Tag.name")


class QuestionTag(Base):
    __tablename__ = "question_tags"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False)
    tag_id = Column(Integer, ForeignKey("tags.id", ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        UniqueConstraint('question_id', 'tag_id', name='uq_question_tag'),
    )


# ============= PIR =============

class PIRRequest(Base):
    """Product Information Request from a customer to a supplier."""
    __tablename__ = "pir_requests"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    supplier_company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)
    suggested_product_name = Column(String(255))
    status = Column(PIRStatusType, nullable=False, default=PIRStatus.DRAFT)
    title = Column(String(500))
    description = Column(Text)
    due_date = Column(DateTime(timezone=True))
    review_round = Column(Integer, nullable=False, default=0)
    created_by = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    customer = relationship("Company", foreign_keys=[customer_id])
    supplier = relationship("Company", foreign_keys=[supplier_company_id])
    product = relationship("Product")
    tags = relationship("Tag", secondary="pir_tags", order_by="Tag.name")
    responses = relationship(
        "PIRResponse", back_populates="pir",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    __table_args__ = (
        Index('ix_pir_requests_customer_supplier', 'customer_id', 'supplier_company_id'),
    )


class PIRTag(Base):
    __tablename__ = "pir_tags"

    id = Column(Integer, primary_key=True, index=True)
    pir_id = Column(Integer, ForeignKey("pir_requests.id", ondelete="CASCADE"), nullable=False)
    tag_id = Column(Integer, ForeignKey("tags.id", ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        UniqueConstraint('pir_id', 'tag_id', name='uq_pir_tag'),
    )


class PIRResponse(Base):
    """The supplier's answer to one question of one PIR."""
    __tablename__ = "pir_responses"

    id = Column(Integer, primary_key=True, index=True)
    pir_id = Column(Integer, ForeignKey("pir_requests.id", ondelete="CASCADE"), nullable=False)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False)
    answer = Column(JSON)
    status = Column(ResponseStatusType, nullable=False, default=ResponseStatus.DRAFT)
    version = Column(Integer, nullable=False, default=1)
    submitted_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    pir = relationship("PIRRequest", back_populates="responses")
    question = relationship("Question")
    flags = relationship(
        "ResponseFlag", back_populates="response", order_by="ResponseFlag.created_at",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    comments = relationship(
        "ResponseComment", back_populates="response", order_by="ResponseComment.created_at",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    components = relationship(
        "PIRResponseComponent", back_populates="response", order_by="PIRResponseComponent.order_index",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint('pir_id', 'question_id', name='uq_pir_response_pir_question'),
    )


class ResponseFlag(Base):
    """Customer objection to a response. Append-only history."""
    __tablename__ = "response_flags"

    id = Column(Integer, primary_key=True, index=True)
    response_id = Column(Integer, ForeignKey("pir_responses.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    created_by = Column(Integer, nullable=False)
    created_by_name = Column(String(255))
    status = Column(FlagStatusType, nullable=False, default=FlagStatus.OPEN)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    resolved_at = Column(DateTime(timezone=True))
    resolved_by = Column(Integer)

    response = relationship("PIRResponse", back_populates="flags")


class ResponseComment(Base):
    __tablename__ = "response_comments"

    id = Column(Integer, primary_key=True, index=True)
    response_id = Column(Integer, ForeignKey("pir_responses.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False)
    user_name = Column(String(255))
    text = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    response = relationship("PIRResponse", back_populates="comments")


class PIRResponseComponent(Base):
    """Component row of a component/material list answer."""
    __tablename__ = "pir_response_components"

    id = Column(Integer, primary_key=True, index=True)
    pir_response_id = Column(Integer, ForeignKey("pir_responses.id", ondelete="CASCADE"), nullable=False, index=True)
    component_name = Column(String(255), nullable=False)
    position = Column(String(255))
    order_index = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    response = relationship("PIRResponse", back_populates="components")
    materials = relationship(
        "PIRResponseComponentMaterial", back_populates="component",
        order_by="PIRResponseComponentMaterial.order_index",
        cascade="all, delete-orphan", passive_deletes=True,
    )


class PIRResponseComponentMaterial(Base):
    __tablename__ = "pir_response_component_materials"

    id = Column(Integer, primary_key=True, index=True)
    component_id = Column(
        Integer, ForeignKey("pir_response_components.id", ondelete="CASCADE"), nullable=False, index=True
    )
    material_name = Column(String(255), nullable=False)
    percentage = Column(Float)
    recyclable = Column(Boolean, nullable=False, default=False)
    order_index = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    component = relationship("PIRResponseComponent", back_populates="materials")


# ============= AUDIT LOG =============

class AuditLog(Base):
    """Compliance-grade audit log."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    user_id = Column(Integer, nullable=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    action = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(100), index=True)
    entity_id = Column(Integer)
    details = Column(JSON)
    ip_address = Column(String(50))

    __table_args__ = (
        Index('ix_audit_logs_company_timestamp', 'company_id', 'timestamp'),
    )
