"""initial payment ledger schema

Revision ID: 5d1c2e7a9b10
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '5d1c2e7a9b10'
down_revision = None
branch_labels = None
depends_on = None

JSONB = postgresql.JSONB(astext_type=sa.Text())
TS = postgresql.TIMESTAMP(timezone=True)


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('stripe_customer_id', sa.String(length=64), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column('created_at', TS, nullable=False, server_default=sa.text("now()")),
        sa.Column('updated_at', TS, nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint('email', name='uq_users_email'),
    )
    op.create_index('ix_users_stripe_customer_id', 'users', ['stripe_customer_id'], unique=True)

    op.create_table(
        'pricing_plans',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('card_title', sa.String(length=255), nullable=False),
        sa.Column('stripe_price_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_product_id', sa.String(length=255), nullable=True),
        sa.Column('payment_type', sa.String(length=50), nullable=True),
        sa.Column('recurring_interval', sa.String(length=50), nullable=True),
        sa.Column('price', sa.Numeric(12, 2), nullable=True),
        sa.Column('currency', sa.String(length=10), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column('benefits_json', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', TS, nullable=False, server_default=sa.text("now()")),
        sa.Column('updated_at', TS, nullable=False, server_default=sa.text("now()")),
    )
    op.create_index('ix_pricing_plans_stripe_price_id', 'pricing_plans', ['stripe_price_id'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('provider_order_id', sa.String(length=255), nullable=False),
        sa.Column('order_type', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('stripe_payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_invoice_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_charge_id', sa.String(length=255), nullable=True),
        sa.Column('subscription_id', sa.String(length=255), nullable=True),
        sa.Column('plan_id', sa.Integer(), nullable=True),
        sa.Column('price_id', sa.String(length=255), nullable=True),
        sa.Column('product_id', sa.String(length=255), nullable=True),
        sa.Column('amount_subtotal', sa.Numeric(12, 2), nullable=True),
        sa.Column('amount_discount', sa.Numeric(12, 2), nullable=True),
        sa.Column('amount_tax', sa.Numeric(12, 2), nullable=True),
        sa.Column('amount_total', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('metadata', JSONB, nullable=True),
        sa.Column('created_at', TS, nullable=False, server_default=sa.text("now()")),
        sa.Column('updated_at', TS, nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(['plan_id'], ['pricing_plans.id'], ondelete="SET NULL"),
        sa.UniqueConstraint('provider', 'provider_order_id', name='uq_orders_provider_provider_order_id'),
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_provider', 'orders', ['provider'])
    op.create_index('ix_orders_order_type', 'orders', ['order_type'])
    op.create_index('ix_orders_stripe_payment_intent_id', 'orders', ['stripe_payment_intent_id'])
    op.create_index('ix_orders_stripe_charge_id', 'orders', ['stripe_charge_id'])
    op.create_index('ix_orders_plan_id', 'orders', ['plan_id'])

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('plan_id', sa.Integer(), nullable=False),
        sa.Column('stripe_subscription_id', sa.String(length=64), nullable=False),
        sa.Column('stripe_customer_id', sa.String(length=64), nullable=False),
        sa.Column('price_id', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('current_period_start', TS, nullable=True),
        sa.Column('current_period_end', TS, nullable=True),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column('canceled_at', TS, nullable=True),
        sa.Column('ended_at', TS, nullable=True),
        sa.Column('trial_start', TS, nullable=True),
        sa.Column('trial_end', TS, nullable=True),
        sa.Column('metadata', JSONB, nullable=True),
        sa.Column('created_at', TS, nullable=False, server_default=sa.text("now()")),
        sa.Column('updated_at', TS, nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(['plan_id'], ['pricing_plans.id'], ondelete="RESTRICT"),
    )
    op.create_index('ix_subscriptions_user_id', 'subscriptions', ['user_id'])
    op.create_index('ix_subscriptions_plan_id', 'subscriptions', ['plan_id'])
    op.create_index('ix_subscriptions_stripe_subscription_id', 'subscriptions', ['stripe_subscription_id'], unique=True)
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])

    op.create_table(
        'usage_balances',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('subscription_credits_balance', sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column('one_time_credits_balance', sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column('balance_json', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', TS, nullable=False, server_default=sa.text("now()")),
        sa.Column('updated_at', TS, nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete="CASCADE"),
        sa.CheckConstraint('subscription_credits_balance >= 0', name='ck_usage_subscription_non_negative'),
        sa.CheckConstraint('one_time_credits_balance >= 0', name='ck_usage_one_time_non_negative'),
    )
    op.create_index('ix_usage_balances_user_id', 'usage_balances', ['user_id'], unique=True)

    op.create_table(
        'credit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('bucket', sa.String(length=16), nullable=False),
        sa.Column('one_time_balance_after', sa.Integer(), nullable=False),
        sa.Column('subscription_balance_after', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('related_order_id', sa.Integer(), nullable=True),
        sa.Column('created_at', TS, nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(['related_order_id'], ['orders.id'], ondelete="SET NULL"),
    )
    op.create_index('ix_credit_logs_user_id', 'credit_logs', ['user_id'])
    op.create_index('ix_credit_logs_type', 'credit_logs', ['type'])
    op.create_index('ix_credit_logs_related_order_id', 'credit_logs', ['related_order_id'])

    op.create_table(
        'billing_event_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('stripe_event_id', sa.String(length=255), nullable=False),
        sa.Column('type', sa.String(length=80), nullable=False),
        sa.Column('payload', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('retries', sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('processed_at', TS, nullable=True),
        sa.Column('created_at', TS, nullable=False, server_default=sa.text("now()")),
    )
    op.create_index('ix_billing_event_logs_stripe_event_id', 'billing_event_logs', ['stripe_event_id'], unique=True)
    op.create_index('ix_billing_event_logs_type', 'billing_event_logs', ['type'])

    op.create_table(
        'email_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('to_email', sa.String(length=320), nullable=False),
        sa.Column('template', sa.String(length=64), nullable=False),
        sa.Column('subject', sa.String(length=200), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('meta', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', TS, nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete="SET NULL"),
    )
    op.create_index('ix_email_logs_to_email', 'email_logs', ['to_email'])
    op.create_index('ix_email_logs_status', 'email_logs', ['status'])


def downgrade():
    op.drop_table('email_logs')
    op.drop_table('billing_event_logs')
    op.drop_table('credit_logs')
    op.drop_table('usage_balances')
    op.drop_table('subscriptions')
    op.drop_table('orders')
    op.drop_table('pricing_plans')
    op.drop_table('users')
