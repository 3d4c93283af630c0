"""Create billing tables

Revision ID: 000
Revises: 
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '000'
down_revision = None
branch_labels = None
depends_on = None

BigIntegerId = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    ]


def upgrade():
    # Create users table
    op.create_table('users',
        sa.Column('id', sa.String(length=36), nullable=False),
        *_timestamps(),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('role', sa.String(), nullable=False, server_default='user'),
        sa.Column('api_token', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), default=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'])
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    op.create_index(op.f('ix_users_api_token'), 'users', ['api_token'], unique=True)

    # Create plans table
    op.create_table('plans',
        sa.Column('id', sa.String(length=50), nullable=False),
        *_timestamps(),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('storage_quota_bytes', sa.BigInteger(), nullable=False),
        sa.Column('max_file_size_bytes', sa.BigInteger(), nullable=False),
        sa.Column('monthly_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('annual_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('features', sa.JSON(), nullable=True),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_popular', sa.Boolean(), default=False),
        sa.Column('sharing_enabled', sa.Boolean(), default=True),
        sa.Column('priority_support', sa.Boolean(), default=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_plans_id'), 'plans', ['id'])

    # Create subscriptions table (quota ledger, one row per user)
    op.create_table('subscriptions',
        sa.Column('id', BigIntegerId, nullable=False),
        *_timestamps(),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('plan_id', sa.String(length=50), nullable=False),
        sa.Column('billing_cycle', sa.String(), nullable=False, server_default='monthly'),
        sa.Column('starts_at', sa.DateTime(), nullable=False),
        sa.Column('ends_at', sa.DateTime(), nullable=True),
        sa.Column('last_payment_at', sa.DateTime(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('storage_used_bytes', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('source_intent_id', sa.String(length=36), nullable=True),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_subscriptions_id'), 'subscriptions', ['id'])
    op.create_index(op.f('ix_subscriptions_user_id'), 'subscriptions', ['user_id'], unique=True)

    # Create payment intents table
    op.create_table('payment_intents',
        sa.Column('id', sa.String(length=36), nullable=False),
        *_timestamps(),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('plan_id', sa.String(length=50), nullable=False),
        sa.Column('billing_cycle', sa.String(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('currency', sa.String(), nullable=False, server_default='INR'),
        sa.Column('status', sa.String(), nullable=False, server_default='created'),
        sa.Column('external_reference', sa.String(), nullable=True),
        sa.Column('payment_channel', sa.String(), nullable=True),
        sa.Column('proof_url', sa.String(), nullable=True),
        sa.Column('idempotency_key', sa.String(), nullable=True),
        sa.Column('verification_notes', sa.Text(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('resolved_by', sa.String(length=64), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('refunded_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_reference'),
        sa.UniqueConstraint('user_id', 'idempotency_key', name='uq_payment_intents_user_idempotency')
    )
    op.create_index(op.f('ix_payment_intents_id'), 'payment_intents', ['id'])
    op.create_index(op.f('ix_payment_intents_user_id'), 'payment_intents', ['user_id'])
    op.create_index(op.f('ix_payment_intents_status'), 'payment_intents', ['status'])

    # Create analytics events table
    op.create_table('analytics_events',
        sa.Column('id', BigIntegerId, nullable=False),
        *_timestamps(),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('intent_id', sa.String(length=36), nullable=True),
        sa.Column('properties', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_analytics_events_id'), 'analytics_events', ['id'])
    op.create_index(op.f('ix_analytics_events_user_id'), 'analytics_events', ['user_id'])
    op.create_index(op.f('ix_analytics_events_event_type'), 'analytics_events', ['event_type'])
    op.create_index(op.f('ix_analytics_events_intent_id'), 'analytics_events', ['intent_id'])


def downgrade():
    op.drop_table('analytics_events')
    op.drop_table('payment_intents')
    op.drop_table('subscriptions')
    op.drop_table('plans')
    op.drop_table('users')
