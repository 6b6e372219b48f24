"""Initial schema: features, plans, entitlement grants, subscriptions, usage ledger

Revision ID: a1c4e7f2b9d0
Revises: 
Create Date: 2026-03-01 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'a1c4e7f2b9d0'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    """Create all tables for the entitlement service."""
    # Enums are stored by value
    op.execute("CREATE TYPE product AS ENUM ('individual', 'recruiter', 'corporate')")
    op.execute("CREATE TYPE plantier AS ENUM ('free', 'standard', 'premium')")
    op.execute("CREATE TYPE planinterval AS ENUM ('monthly', 'annual')")
    op.execute("CREATE TYPE featurekind AS ENUM ('TOGGLE', 'QUOTA', 'METERED')")
    op.execute("CREATE TYPE holderkind AS ENUM ('individual', 'organization', 'business')")
    op.execute("CREATE TYPE subscriptionstatus AS ENUM ('active', 'canceled')")

    # 1. Feature catalog
    op.create_table(
        'features',
        *_timestamps(),
        sa.Column('key', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('kind', _enum('featurekind'), nullable=False),
        sa.Column('unit', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_features_key'), 'features', ['key'], unique=True)

    # 2. Plans
    op.create_table(
        'plans',
        *_timestamps(),
        sa.Column('product', _enum('product'), nullable=False),
        sa.Column('tier', _enum('plantier'), nullable=False),
        sa.Column('interval', _enum('planinterval'), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='ZAR'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('is_public', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('previous_version_id', sa.UUID(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product', 'tier', 'interval', 'version', name='uq_plans_product_tier_interval_version'),
    )
    op.create_index(op.f('ix_plans_product'), 'plans', ['product'])
    op.create_index(op.f('ix_plans_active'), 'plans', ['active'])

    # 3. Entitlement grants (depends on plans, features)
    op.create_table(
        'entitlement_grants',
        *_timestamps(),
        sa.Column('plan_id', sa.UUID(), nullable=False),
        sa.Column('feature_key', sa.String(), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('monthly_cap', sa.Integer(), nullable=True),
        sa.Column('overage_unit_cents', sa.Integer(), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['feature_key'], ['features.key']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('plan_id', 'feature_key', name='uq_entitlement_grants_plan_feature'),
    )
    op.create_index(op.f('ix_entitlement_grants_plan_id'), 'entitlement_grants', ['plan_id'])

    # 4. Subscriptions (plan_id is a weak reference, no FK)
    op.create_table(
        'subscriptions',
        *_timestamps(),
        sa.Column('holder_type', _enum('holderkind'), nullable=False),
        sa.Column('holder_id', sa.UUID(), nullable=False),
        sa.Column('plan_id', sa.UUID(), nullable=False),
        sa.Column('status', _enum('subscriptionstatus'), nullable=False, server_default='active'),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('current_period_start', sa.DateTime(), nullable=False),
        sa.Column('current_period_end', sa.DateTime(), nullable=False),
        sa.Column('billing_anchor', sa.DateTime(), nullable=False),
        sa.Column('canceled_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_subscriptions_holder_id'), 'subscriptions', ['holder_id'])
    op.create_index(op.f('ix_subscriptions_plan_id'), 'subscriptions', ['plan_id'])
    op.create_index(op.f('ix_subscriptions_status'), 'subscriptions', ['status'])
    op.create_index(op.f('ix_subscriptions_current_period_end'), 'subscriptions', ['current_period_end'])
    op.create_index('ix_subscriptions_status_period_end', 'subscriptions', ['status', 'current_period_end'])
    op.create_index(
        'uq_subscriptions_one_active_per_holder',
        'subscriptions',
        ['holder_type', 'holder_id'],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    # 5. Subscription history (depends on subscriptions)
    op.create_table(
        'subscription_history',
        *_timestamps(),
        sa.Column('subscription_id', sa.UUID(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('old_value', sa.String(), nullable=True),
        sa.Column('new_value', sa.String(), nullable=True),
        sa.Column('reason', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_subscription_history_subscription_id'), 'subscription_history', ['subscription_id'])

    # 6. Usage ledger
    op.create_table(
        'usage_records',
        *_timestamps(),
        sa.Column('holder_type', _enum('holderkind'), nullable=False),
        sa.Column('holder_id', sa.UUID(), nullable=False),
        sa.Column('feature_key', sa.String(), nullable=False),
        sa.Column('period_start', sa.DateTime(), nullable=False),
        sa.Column('period_end', sa.DateTime(), nullable=False),
        sa.Column('used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('extra_allowance', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'holder_type', 'holder_id', 'feature_key', 'period_start', name='uq_usage_records_holder_feature_period'
        ),
    )
    op.create_index(op.f('ix_usage_records_feature_key'), 'usage_records', ['feature_key'])
    op.create_index(
        'ix_usage_records_holder_period_end', 'usage_records', ['holder_type', 'holder_id', 'period_end']
    )

    # 7. Usage archive (optional copy of purged records)
    op.create_table(
        'usage_archive',
        *_timestamps(),
        sa.Column('holder_type', _enum('holderkind'), nullable=False),
        sa.Column('holder_id', sa.UUID(), nullable=False),
        sa.Column('feature_key', sa.String(), nullable=False),
        sa.Column('period_start', sa.DateTime(), nullable=False),
        sa.Column('period_end', sa.DateTime(), nullable=False),
        sa.Column('used', sa.Integer(), nullable=False),
        sa.Column('extra_allowance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('archived_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_usage_archive_holder_id'), 'usage_archive', ['holder_id'])


def downgrade() -> None:
    """Drop all tables."""
    # Drop tables in reverse dependency order
    op.drop_table('usage_archive')
    op.drop_table('usage_records')
    op.drop_table('subscription_history')
    op.drop_table('subscriptions')
    op.drop_table('entitlement_grants')
    op.drop_table('plans')
    op.drop_table('features')

    for enum_name in ('subscriptionstatus', 'holderkind', 'featurekind', 'planinterval', 'plantier', 'product'):
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
