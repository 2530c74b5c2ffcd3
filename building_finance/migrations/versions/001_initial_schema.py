"""Initial schema: buildings, flats, financial settings, demands, payments, audit log.

Revision ID: 001_initial_schema
Revises: None
Create Date: 2024-03-01 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None

BILLABLE_DEMAND_PREDICATE = "cancelled_at IS NULL AND base_amount > 0"


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create finance tables."""
    op.create_table(
        'buildings',
        *_timestamps(),
        sa.Column('name', sa.String(200), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'building_financial_settings',
        *_timestamps(),
        sa.Column('building_id', sa.Integer(), nullable=False),
        sa.Column('rate_per_area_unit', sa.Numeric(precision=10, scale=4), nullable=True),
        sa.Column('due_lead_days', sa.Integer(), nullable=True),
        sa.Column('fiscal_year_start_month', sa.Integer(), nullable=False),
        sa.Column('fiscal_year_start_day', sa.Integer(), nullable=False),
        sa.Column('reserve_fund_percentage', sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column('updated_by', sa.String(100), nullable=True),
        sa.ForeignKeyConstraint(['building_id'], ['buildings.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('fiscal_year_start_month BETWEEN 1 AND 12', name='ck_settings_anchor_month'),
        sa.CheckConstraint('fiscal_year_start_day BETWEEN 1 AND 31', name='ck_settings_anchor_day'),
    )
    op.create_index(
        'ix_building_financial_settings_building_id',
        'building_financial_settings',
        ['building_id'],
        unique=True,
    )

    op.create_table(
        'flats',
        *_timestamps(),
        sa.Column('building_id', sa.Integer(), nullable=False),
        sa.Column('flat_number', sa.String(50), nullable=False),
        sa.Column('area_units', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('ground_rent', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('contact_telegram_id', sa.BigInteger(), nullable=True),
        sa.ForeignKeyConstraint(['building_id'], ['buildings.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_flats_building_id', 'flats', ['building_id'])
    op.create_index('idx_flat_building_number', 'flats', ['building_id', 'flat_number'])

    op.create_table(
        'service_charge_demands',
        *_timestamps(),
        sa.Column('flat_id', sa.Integer(), nullable=False),
        sa.Column('building_id', sa.Integer(), nullable=False),
        sa.Column('flat_number', sa.String(50), nullable=False),
        sa.Column('quarter_key', sa.String(7), nullable=False),
        sa.Column('quarter_display_string', sa.String(20), nullable=False),
        sa.Column('quarter_start_date', sa.Date(), nullable=False),
        sa.Column('area_at_issue', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('rate_at_issue', sa.Numeric(precision=10, scale=4), nullable=False),
        sa.Column('base_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('ground_rent_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('penalty_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('total_due', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('amount_paid', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('outstanding', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('issued_by', sa.String(100), nullable=True),
        sa.Column('last_reminder_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('penalty_applied_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['flat_id'], ['flats.id'], ),
        sa.ForeignKeyConstraint(['building_id'], ['buildings.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('outstanding >= 0', name='ck_demand_outstanding_non_negative'),
        sa.CheckConstraint('amount_paid >= 0', name='ck_demand_amount_paid_non_negative'),
    )
    op.create_index('ix_service_charge_demands_flat_id', 'service_charge_demands', ['flat_id'])
    op.create_index('ix_service_charge_demands_building_id', 'service_charge_demands', ['building_id'])
    op.create_index(
        'idx_demand_building_quarter', 'service_charge_demands', ['building_id', 'quarter_key']
    )
    # At most one live billable demand per flat and quarter
    op.create_index(
        'uq_demand_flat_quarter_billable',
        'service_charge_demands',
        ['flat_id', 'quarter_key'],
        unique=True,
        sqlite_where=sa.text(BILLABLE_DEMAND_PREDICATE),
        postgresql_where=sa.text(BILLABLE_DEMAND_PREDICATE),
    )

    op.create_table(
        'payment_records',
        *_timestamps(),
        sa.Column('demand_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column(
            'method',
            sa.Enum('Online', 'Bank Transfer', 'Cheque', 'Cash', 'Other', name='paymentmethod'),
            nullable=False,
        ),
        sa.Column('payment_date', sa.Date(), nullable=False),
        sa.Column('recorded_by', sa.String(100), nullable=False),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('reference', sa.String(200), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['demand_id'], ['service_charge_demands.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('amount > 0', name='ck_payment_amount_positive'),
    )
    op.create_index('ix_payment_records_demand_id', 'payment_records', ['demand_id'])

    op.create_table(
        'audit_logs',
        *_timestamps(),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('actor', sa.String(100), nullable=True),
        sa.Column('changes', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )


def downgrade() -> None:
    """Drop finance tables."""
    op.drop_table('audit_logs')
    op.drop_index('ix_payment_records_demand_id', table_name='payment_records')
    op.drop_table('payment_records')
    op.drop_index('uq_demand_flat_quarter_billable', table_name='service_charge_demands')
    op.drop_index('idx_demand_building_quarter', table_name='service_charge_demands')
    op.drop_index('ix_service_charge_demands_building_id', table_name='service_charge_demands')
    op.drop_index('ix_service_charge_demands_flat_id', table_name='service_charge_demands')
    op.drop_table('service_charge_demands')
    op.drop_index('idx_flat_building_number', table_name='flats')
    op.drop_index('ix_flats_building_id', table_name='flats')
    op.drop_table('flats')
    op.drop_index('ix_building_financial_settings_building_id', table_name='building_financial_settings')
    op.drop_table('building_financial_settings')
    op.drop_table('buildings')
