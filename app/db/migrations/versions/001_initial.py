"""initial schema with enums

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

Creates all enum types and tables for Compliant Connect.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    'company_role': ('supplier', 'customer', 'both'),
    'relationship_status': ('active', 'inactive', 'pending'),
    'pir_status': (
        'draft', 'submitted', 'in_review', 'flagged', 'approved', 'rejected',
        'sent', 'in_progress', 'resubmitted', 'canceled',
    ),
    'response_status': ('draft', 'submitted', 'flagged', 'approved'),
    'flag_status': ('open', 'in_progress', 'resolved', 'rejected'),
    'question_type': (
        'text', 'number', 'boolean', 'single_select', 'multi_select', 'date', 'file',
        'list_table', 'component_material_list',
    ),
}


def _timestamps(updated_default: bool = False):
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column(
            'updated_at', sa.DateTime(timezone=True),
            server_default=sa.func.now() if updated_default else None,
        ),
    ]


def upgrade() -> None:
    # Create enum types first
    enums = {}
    for name, values in ENUMS.items():
        enum = postgresql.ENUM(*values, name=name, create_type=False)
        enum.create(op.get_bind(), checkfirst=True)
        enums[name] = enum

    # Companies
    op.create_table('companies',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('role', enums['company_role'], nullable=False, server_default='both'),
        sa.Column('contact_name', sa.String(255)),
        sa.Column('contact_email', sa.String(255)),
        sa.Column('contact_phone', sa.String(50)),
        sa.Column('country', sa.String(100)),
        *_timestamps(),
    )

    op.create_table('company_relationships',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('customer_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('supplier_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', enums['relationship_status'], nullable=False, server_default='pending'),
        *_timestamps(),
        sa.UniqueConstraint('customer_id', 'supplier_id', name='uq_company_relationship'),
    )

    op.create_table('company_users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(255)),
        sa.Column('full_name', sa.String(255)),
        sa.Column('role', sa.String(50), nullable=False, server_default='member'),
        *_timestamps(),
        sa.UniqueConstraint('company_id', 'user_id', name='uq_company_user'),
    )
    op.create_index('ix_company_users_user_id', 'company_users', ['user_id'])

    op.create_table('products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('supplier_company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Question bank
    op.create_table('question_sections',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('parent_id', sa.Integer(), sa.ForeignKey('question_sections.id'), nullable=True),
        *_timestamps(),
    )

    op.create_table('tags',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False, unique=True),
        sa.Column('description', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table('questions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('type', enums['question_type'], nullable=False),
        sa.Column('required', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('options', sa.JSON()),
        sa.Column('section_id', sa.Integer(), sa.ForeignKey('question_sections.id'), nullable=True),
        sa.Column('order_index', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
    )

    op.create_table('question_tags',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('question_id', sa.Integer(), sa.ForeignKey('questions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('tag_id', sa.Integer(), sa.ForeignKey('tags.id', ondelete='CASCADE'), nullable=False),
        sa.UniqueConstraint('question_id', 'tag_id', name='uq_question_tag'),
    )

    # PIR requests
    op.create_table('pir_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('customer_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('supplier_company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=True),
        sa.Column('suggested_product_name', sa.String(255)),
        sa.Column('status', enums['pir_status'], nullable=False, server_default='draft'),
        sa.Column('title', sa.String(500)),
        sa.Column('description', sa.Text()),
        sa.Column('due_date', sa.DateTime(timezone=True)),
        sa.Column('review_round', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by', sa.Integer()),
        *_timestamps(updated_default=True),
    )
    op.create_index('ix_pir_requests_customer_id', 'pir_requests', ['customer_id'])
    op.create_index('ix_pir_requests_supplier_company_id', 'pir_requests', ['supplier_company_id'])
    op.create_index('ix_pir_requests_customer_supplier', 'pir_requests', ['customer_id', 'supplier_company_id'])

    op.create_table('pir_tags',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('pir_id', sa.Integer(), sa.ForeignKey('pir_requests.id', ondelete='CASCADE'), nullable=False),
        sa.Column('tag_id', sa.Integer(), sa.ForeignKey('tags.id', ondelete='CASCADE'), nullable=False),
        sa.UniqueConstraint('pir_id', 'tag_id', name='uq_pir_tag'),
    )

    op.create_table('pir_responses',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('pir_id', sa.Integer(), sa.ForeignKey('pir_requests.id', ondelete='CASCADE'), nullable=False),
        sa.Column('question_id', sa.Integer(), sa.ForeignKey('questions.id'), nullable=False),
        sa.Column('answer', sa.JSON()),
        sa.Column('status', enums['response_status'], nullable=False, server_default='draft'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('submitted_at', sa.DateTime(timezone=True)),
        *_timestamps(updated_default=True),
        sa.UniqueConstraint('pir_id', 'question_id', name='uq_pir_response_pir_question'),
    )

    op.create_table('response_flags',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('response_id', sa.Integer(), sa.ForeignKey('pir_responses.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=False),
        sa.Column('created_by_name', sa.String(255)),
        sa.Column('status', enums['flag_status'], nullable=False, server_default='open'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('resolved_at', sa.DateTime(timezone=True)),
        sa.Column('resolved_by', sa.Integer()),
    )
    op.create_index('ix_response_flags_response_id', 'response_flags', ['response_id'])

    op.create_table('response_comments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('response_id', sa.Integer(), sa.ForeignKey('pir_responses.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('user_name', sa.String(255)),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_response_comments_response_id', 'response_comments', ['response_id'])

    op.create_table('pir_response_components',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('pir_response_id', sa.Integer(), sa.ForeignKey('pir_responses.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('component_name', sa.String(255), nullable=False),
        sa.Column('position', sa.String(255)),
        sa.Column('order_index', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
    )
    op.create_index('ix_pir_response_components_pir_response_id', 'pir_response_components', ['pir_response_id'])

    op.create_table('pir_response_component_materials',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('component_id', sa.Integer(), sa.ForeignKey('pir_response_components.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('material_name', sa.String(255), nullable=False),
        sa.Column('percentage', sa.Float()),
        sa.Column('recyclable', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('order_index', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
    )
    op.create_index(
        'ix_pir_response_component_materials_component_id', 'pir_response_component_materials', ['component_id'],
    )

    # Audit log
    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('entity_type', sa.String(100)),
        sa.Column('entity_id', sa.Integer()),
        sa.Column('details', sa.JSON()),
        sa.Column('ip_address', sa.String(50)),
    )
    op.create_index('ix_audit_logs_timestamp', 'audit_logs', ['timestamp'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_company_timestamp', 'audit_logs', ['company_id', 'timestamp'])


def downgrade() -> None:
    # Drop tables in reverse order (respecting foreign keys)
    op.drop_table('audit_logs')
    op.drop_table('pir_response_component_materials')
    op.drop_table('pir_response_components')
    op.drop_table('response_comments')
    op.drop_table('response_flags')
    op.drop_table('pir_responses')
    op.drop_table('pir_tags')
    op.drop_table('pir_requests')
    op.drop_table('question_tags')
    op.drop_table('questions')
    op.drop_table('tags')
    op.drop_table('question_sections')
    op.drop_table('products')
    op.drop_table('company_users')
    op.drop_table('company_relationships')
    op.drop_table('companies')

    # Drop enum types
    for name in reversed(list(ENUMS)):
        op.execute(f'DROP TYPE IF EXISTS {name}')
