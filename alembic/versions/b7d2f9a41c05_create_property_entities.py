"""create_property_entities

Revision ID: b7d2f9a41c05
Revises: a1c4e7f20b31
Create Date: 2026-01-12 09:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'b7d2f9a41c05'
down_revision: Union[str, Sequence[str], None] = 'a1c4e7f20b31'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
    ]


def _external_id_index(table: str) -> None:
    op.create_index(op.f(f'ix_{table}_external_id'), table, ['external_id'], unique=True)


def upgrade() -> None:
    op.create_table('properties',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('external_id', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('address_line1', sa.String(length=255), nullable=True),
        sa.Column('address_line2', sa.String(length=255), nullable=True),
        sa.Column('city', sa.String(length=100), nullable=True),
        sa.Column('state', sa.String(length=50), nullable=True),
        sa.Column('zip', sa.String(length=20), nullable=True),
        sa.Column('county', sa.String(length=100), nullable=True),
        sa.Column('property_type', sa.String(length=50), nullable=True),
        sa.Column('unit_count', sa.Integer(), nullable=True),
        sa.Column('year_built', sa.Integer(), nullable=True),
        sa.Column('total_sqft', sa.Integer(), nullable=True),
        sa.Column('portfolio', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('source_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('latitude', sa.String(length=32), nullable=True),
        sa.Column('longitude', sa.String(length=32), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    _external_id_index('properties')

    op.create_table('vendors',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('external_id', sa.String(length=255), nullable=False),
        sa.Column('company_name', sa.String(length=255), nullable=False),
        sa.Column('contact_name', sa.String(length=255), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('address_street', sa.String(length=255), nullable=True),
        sa.Column('address_city', sa.String(length=100), nullable=True),
        sa.Column('address_state', sa.String(length=50), nullable=True),
        sa.Column('address_zip', sa.String(length=20), nullable=True),
        sa.Column('vendor_type', sa.String(length=100), nullable=True),
        sa.Column('vendor_trades', sa.String(length=500), nullable=True),
        sa.Column('workers_comp_expires', sa.Date(), nullable=True),
        sa.Column('liability_ins_expires', sa.Date(), nullable=True),
        sa.Column('auto_ins_expires', sa.Date(), nullable=True),
        sa.Column('state_lic_expires', sa.Date(), nullable=True),
        sa.Column('do_not_use', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('source_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('canonical_vendor_id', sa.String(length=36), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    _external_id_index('vendors')

    op.create_table('units',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('external_id', sa.String(length=255), nullable=False),
        sa.Column('property_id', sa.String(length=36), nullable=False),
        sa.Column('unit_number', sa.String(length=100), nullable=False),
        sa.Column('unit_type', sa.String(length=100), nullable=True),
        sa.Column('sqft', sa.Integer(), nullable=True),
        sa.Column('bedrooms', sa.Integer(), nullable=True),
        sa.Column('bathrooms', sa.Float(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('market_rent', sa.Float(), nullable=True),
        sa.Column('advertised_rent', sa.Float(), nullable=True),
        sa.Column('rentable', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('source_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    _external_id_index('units')
    op.create_index(op.f('ix_units_property_id'), 'units', ['property_id'], unique=False)

    op.create_table('work_orders',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('external_id', sa.String(length=255), nullable=False),
        sa.Column('property_id', sa.String(length=36), nullable=True),
        sa.Column('unit_id', sa.String(length=36), nullable=True),
        sa.Column('vendor_id', sa.String(length=36), nullable=True),
        sa.Column('vendor_name', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('priority', sa.String(length=20), nullable=False),
        sa.Column('category', sa.String(length=255), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('opened_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('amount', sa.Float(), nullable=True),
        sa.Column('vendor_bill_amount', sa.Float(), nullable=True),
        sa.Column('estimate_amount', sa.Float(), nullable=True),
        sa.Column('vendor_trade', sa.String(length=255), nullable=True),
        sa.Column('source_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], ),
        sa.ForeignKeyConstraint(['unit_id'], ['units.id'], ),
        sa.ForeignKeyConstraint(['vendor_id'], ['vendors.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    _external_id_index('work_orders')
    op.create_index(op.f('ix_work_orders_property_id'), 'work_orders', ['property_id'], unique=False)

    op.create_table('expenses',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('external_id', sa.String(length=255), nullable=False),
        sa.Column('property_id', sa.String(length=36), nullable=False),
        sa.Column('vendor_id', sa.String(length=36), nullable=True),
        sa.Column('payee_name', sa.String(length=255), nullable=True),
        sa.Column('bill_date', sa.Date(), nullable=True),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('period_start', sa.Date(), nullable=True),
        sa.Column('period_end', sa.Date(), nullable=True),
        sa.Column('amount', sa.Float(), nullable=True),
        sa.Column('paid', sa.Float(), nullable=True),
        sa.Column('unpaid', sa.Float(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('gl_account', sa.String(length=255), nullable=True),
        sa.Column('gl_account_number', sa.String(length=50), nullable=True),
        sa.Column('utility_type', sa.String(length=50), nullable=True),
        sa.Column('reference_number', sa.String(length=100), nullable=True),
        sa.Column('source_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('adjusted_amount', sa.Float(), nullable=True),
        sa.Column('adjustment_reason', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], ),
        sa.ForeignKeyConstraint(['vendor_id'], ['vendors.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    _external_id_index('expenses')
    op.create_index(op.f('ix_expenses_property_id'), 'expenses', ['property_id'], unique=False)
    op.create_index(op.f('ix_expenses_bill_date'), 'expenses', ['bill_date'], unique=False)
    op.create_index(op.f('ix_expenses_gl_account_number'), 'expenses', ['gl_account_number'], unique=False)

    op.create_table('utility_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('gl_account_number', sa.String(length=50), nullable=False),
        sa.Column('gl_account_name', sa.String(length=255), nullable=True),
        sa.Column('utility_type', sa.String(length=50), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_utility_accounts_id'), 'utility_accounts', ['id'], unique=False)
    op.create_index(op.f('ix_utility_accounts_gl_account_number'), 'utility_accounts', ['gl_account_number'], unique=True)


def downgrade() -> None:
    op.drop_table('utility_accounts')
    op.drop_table('expenses')
    op.drop_table('work_orders')
    op.drop_table('units')
    op.drop_table('vendors')
    op.drop_table('properties')
