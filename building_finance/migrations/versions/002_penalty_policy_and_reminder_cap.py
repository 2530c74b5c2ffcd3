"""Penalty policy and reminder cap on financial settings, reminder count on demands.

Revision ID: 002_penalty_policy_and_reminder_cap
Revises: 001_initial_schema
Create Date: 2024-06-10 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '002_penalty_policy_and_reminder_cap'
down_revision = '001_initial_schema'
branch_labels = None
depends_on = None

penalty_type = sa.Enum('none', 'flat', 'percentage', 'both', name='penaltytype')


def upgrade() -> None:
    """Add penalty and reminder columns."""
    with op.batch_alter_table('building_financial_settings') as batch_op:
        batch_op.add_column(
            sa.Column('penalty_type', penalty_type, nullable=False, server_default='none')
        )
        batch_op.add_column(sa.Column('penalty_flat_amount', sa.Numeric(10, 2), nullable=True))
        batch_op.add_column(sa.Column('penalty_percentage', sa.Numeric(5, 2), nullable=True))
        batch_op.add_column(
            sa.Column('penalty_grace_days', sa.Integer(), nullable=False, server_default='0')
        )
        batch_op.add_column(sa.Column('penalty_max_amount', sa.Numeric(10, 2), nullable=True))
        batch_op.add_column(
            sa.Column('max_reminders', sa.Integer(), nullable=False, server_default='3')
        )
        batch_op.create_check_constraint(
            'ck_settings_penalty_grace_days', 'penalty_grace_days >= 0'
        )
        batch_op.create_check_constraint('ck_settings_max_reminders', 'max_reminders >= 0')

    with op.batch_alter_table('service_charge_demands') as batch_op:
        batch_op.add_column(
            sa.Column('reminders_sent', sa.Integer(), nullable=False, server_default='0')
        )

    # Demands reminded before this revision count as reminded once
    op.execute(
        "UPDATE service_charge_demands SET reminders_sent = 1 WHERE last_reminder_at IS NOT NULL"
    )


def downgrade() -> None:
    """Drop penalty and reminder columns."""
    with op.batch_alter_table('service_charge_demands') as batch_op:
        batch_op.drop_column('reminders_sent')

    with op.batch_alter_table('building_financial_settings') as batch_op:
        batch_op.drop_constraint('ck_settings_max_reminders', type_='check')
        batch_op.drop_constraint('ck_settings_penalty_grace_days', type_='check')
        batch_op.drop_column('max_reminders')
        batch_op.drop_column('penalty_max_amount')
        batch_op.drop_column('penalty_grace_days')
        batch_op.drop_column('penalty_percentage')
        batch_op.drop_column('penalty_flat_amount')
        batch_op.drop_column('penalty_type')
