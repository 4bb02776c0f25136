"""Initial buildledger schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18

Creates:
- tenants: companies, brands, users, locations
- catalog: components, skus, bom_versions, bom_lines
- lots: lots, lot_balances
- ledger: ledger_entries, ledger_lines, finished_goods_lines
- balances: inventory_balances, finished_goods_balances
- quality: defect_thresholds, defect_alerts
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(updated: bool = True):
    columns = [sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now())]
    if updated:
        columns.append(sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()))
    return columns


def upgrade() -> None:
    # Tenants
    op.create_table(
        'companies',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'brands',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'name', name='uq_brands_company_name'),
    )
    op.create_index('ix_brands_company_id', 'brands', ['company_id'])
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False, unique=True),
        sa.Column('name', sa.String(length=200), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_company_id', 'users', ['company_id'])
    op.create_table(
        'locations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('type', sa.String(length=50), nullable=False, server_default='warehouse'),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notes', sa.String(length=500), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_locations_company_id', 'locations', ['company_id'])

    # Catalog
    op.create_table(
        'components',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('brand_id', sa.Integer(), sa.ForeignKey('brands.id'), nullable=True),
        sa.Column('sku_code', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=100), nullable=True),
        sa.Column('unit_of_measure', sa.String(length=20), nullable=False, server_default='each'),
        sa.Column('cost_per_unit', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        sa.Column('reorder_point', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        sa.Column('lead_time_days', sa.Integer(), nullable=False, server_default='7'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'sku_code', name='uq_components_company_sku_code'),
    )
    op.create_index('ix_components_company_id', 'components', ['company_id'])
    op.create_table(
        'skus',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('brand_id', sa.Integer(), sa.ForeignKey('brands.id'), nullable=True),
        sa.Column('internal_code', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('sales_channel', sa.String(length=50), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'internal_code', name='uq_skus_company_internal_code'),
    )
    op.create_index('ix_skus_company_id', 'skus', ['company_id'])
    op.create_table(
        'bom_versions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('version_name', sa.String(length=100), nullable=False),
        sa.Column('effective_start_date', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('effective_end_date', sa.DateTime(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('defect_notes', sa.Text(), nullable=True),
        sa.Column('quality_metadata', sa.JSON(), nullable=True),
        sa.Column('created_by_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_bom_versions_sku_id', 'bom_versions', ['sku_id'])
    op.create_table(
        'bom_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('bom_version_id', sa.Integer(), sa.ForeignKey('bom_versions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('component_id', sa.Integer(), sa.ForeignKey('components.id'), nullable=False),
        sa.Column('quantity_per_unit', sa.Numeric(precision=18, scale=4), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('bom_version_id', 'component_id', name='uq_bom_lines_version_component'),
        sa.CheckConstraint('quantity_per_unit >= 0', name='ck_bom_lines_quantity_nonnegative'),
    )
    op.create_index('ix_bom_lines_bom_version_id', 'bom_lines', ['bom_version_id'])
    op.create_index('ix_bom_lines_component_id', 'bom_lines', ['component_id'])

    # Lots
    op.create_table(
        'lots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('component_id', sa.Integer(), sa.ForeignKey('components.id'), nullable=False),
        sa.Column('lot_number', sa.String(length=100), nullable=False),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('received_quantity', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        sa.Column('supplier', sa.String(length=200), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('component_id', 'lot_number', name='uq_lots_component_lot_number'),
    )
    op.create_index('ix_lots_component_id', 'lots', ['component_id'])
    # FEFO listing: expiry first, receipt order as tie-break
    op.create_index('ix_lots_component_expiry', 'lots', ['component_id', 'expiry_date', 'created_at'])
    op.create_table(
        'lot_balances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('lot_id', sa.Integer(), sa.ForeignKey('lots.id'), nullable=False, unique=True),
        sa.Column('quantity', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        sa.Column('reserved_quantity', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity >= 0', name='ck_lot_balances_quantity_nonnegative'),
    )

    # Ledger
    op.create_table(
        'ledger_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('date', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=True),
        sa.Column('bom_version_id', sa.Integer(), sa.ForeignKey('bom_versions.id'), nullable=True),
        sa.Column('units_built', sa.Integer(), nullable=True),
        sa.Column('unit_bom_cost', sa.Numeric(precision=18, scale=4), nullable=True),
        sa.Column('total_bom_cost', sa.Numeric(precision=18, scale=4), nullable=True),
        sa.Column('sales_channel', sa.String(length=50), nullable=True),
        sa.Column('defect_count', sa.Integer(), nullable=True),
        sa.Column('defect_notes', sa.Text(), nullable=True),
        sa.Column('affected_units', sa.Integer(), nullable=True),
        sa.Column('location_id', sa.Integer(), sa.ForeignKey('locations.id'), nullable=True),
        sa.Column('from_location_id', sa.Integer(), sa.ForeignKey('locations.id'), nullable=True),
        sa.Column('to_location_id', sa.Integer(), sa.ForeignKey('locations.id'), nullable=True),
        sa.Column('supplier', sa.String(length=200), nullable=True),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('reversal_of_id', sa.Integer(), sa.ForeignKey('ledger_entries.id'), nullable=True, unique=True),
        sa.Column('reversed_by_id', sa.Integer(), sa.ForeignKey('ledger_entries.id'), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_ledger_entries_company_id', 'ledger_entries', ['company_id'])
    op.create_index('ix_ledger_entries_type', 'ledger_entries', ['type'])
    op.create_index('ix_ledger_entries_sku_id', 'ledger_entries', ['sku_id'])
    op.create_table(
        'ledger_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entry_id', sa.Integer(), sa.ForeignKey('ledger_entries.id'), nullable=False),
        sa.Column('component_id', sa.Integer(), sa.ForeignKey('components.id'), nullable=False),
        sa.Column('location_id', sa.Integer(), sa.ForeignKey('locations.id'), nullable=True),
        sa.Column('lot_id', sa.Integer(), sa.ForeignKey('lots.id'), nullable=True),
        sa.Column('quantity_change', sa.Numeric(precision=18, scale=4), nullable=False),
        sa.Column('cost_per_unit', sa.Numeric(precision=18, scale=4), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_ledger_lines_entry_id', 'ledger_lines', ['entry_id'])
    op.create_index('ix_ledger_lines_component_id', 'ledger_lines', ['component_id'])
    op.create_index('ix_ledger_lines_location_id', 'ledger_lines', ['location_id'])
    op.create_index('ix_ledger_lines_lot_id', 'ledger_lines', ['lot_id'])
    op.create_table(
        'finished_goods_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entry_id', sa.Integer(), sa.ForeignKey('ledger_entries.id'), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('location_id', sa.Integer(), sa.ForeignKey('locations.id'), nullable=False),
        sa.Column('quantity_change', sa.Numeric(precision=18, scale=4), nullable=False),
        sa.Column('cost_per_unit', sa.Numeric(precision=18, scale=4), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_finished_goods_lines_entry_id', 'finished_goods_lines', ['entry_id'])
    op.create_index('ix_finished_goods_lines_sku_id', 'finished_goods_lines', ['sku_id'])
    op.create_index('ix_finished_goods_lines_location_id', 'finished_goods_lines', ['location_id'])

    # Running balances
    op.create_table(
        'inventory_balances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('component_id', sa.Integer(), sa.ForeignKey('components.id'), nullable=False),
        sa.Column('location_id', sa.Integer(), sa.ForeignKey('locations.id'), nullable=True),
        sa.Column('quantity', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('component_id', 'location_id', name='uq_inventory_balances_component_location'),
    )
    op.create_index('ix_inventory_balances_component_id', 'inventory_balances', ['component_id'])
    op.create_index('ix_inventory_balances_location_id', 'inventory_balances', ['location_id'])
    op.create_table(
        'finished_goods_balances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('location_id', sa.Integer(), sa.ForeignKey('locations.id'), nullable=False),
        sa.Column('quantity', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku_id', 'location_id', name='uq_finished_goods_balances_sku_location'),
    )
    op.create_index('ix_finished_goods_balances_sku_id', 'finished_goods_balances', ['sku_id'])
    op.create_index('ix_finished_goods_balances_location_id', 'finished_goods_balances', ['location_id'])

    # Quality
    op.create_table(
        'defect_thresholds',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=True),
        sa.Column('defect_rate_limit', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('affected_rate_limit', sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'sku_id', name='uq_defect_thresholds_company_sku'),
    )
    op.create_index('ix_defect_thresholds_company_id', 'defect_thresholds', ['company_id'])
    op.create_table(
        'defect_alerts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('threshold_id', sa.Integer(), sa.ForeignKey('defect_thresholds.id'), nullable=False),
        sa.Column('entry_id', sa.Integer(), sa.ForeignKey('ledger_entries.id'), nullable=False),
        sa.Column('sku_id', sa.Integer(), sa.ForeignKey('skus.id'), nullable=False),
        sa.Column('defect_rate', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('threshold_value', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('severity', sa.String(length=20), nullable=False),
        sa.Column('acknowledged_at', sa.DateTime(), nullable=True),
        sa.Column('acknowledged_by_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_defect_alerts_threshold_id', 'defect_alerts', ['threshold_id'])
    op.create_index('ix_defect_alerts_sku_id', 'defect_alerts', ['sku_id'])


def downgrade() -> None:
    for table in (
        'defect_alerts',
        'defect_thresholds',
        'finished_goods_balances',
        'inventory_balances',
        'finished_goods_lines',
        'ledger_lines',
        'ledger_entries',
        'lot_balances',
        'lots',
        'bom_lines',
        'bom_versions',
        'skus',
        'components',
        'locations',
        'users',
        'brands',
        'companies',
    ):
        op.drop_table(table)
