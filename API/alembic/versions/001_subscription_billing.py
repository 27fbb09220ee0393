"""Subscription billing tables

Revision ID: 001_subscription_billing
Revises: (none)
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

revision = '001_subscription_billing'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    from sqlalchemy import inspect
    bind = op.get_bind()
    inspector = inspect(bind)
    existing = inspector.get_table_names()

    def timestamps():
        return [
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
        ]

    if 'tenants' not in existing:
        op.create_table(
            'tenants',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('name', sa.String(300), nullable=False),
            sa.Column('slug', sa.String(100), nullable=False, unique=True, index=True),
            sa.Column('owner_id', sa.String(64), nullable=False, index=True),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            *timestamps(),
        )
        op.create_index('ix_tenants_is_active', 'tenants', ['is_active'])

    if 'subscription_plans' not in existing:
        op.create_table(
            'subscription_plans',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('name', sa.String(50), nullable=False, unique=True),
            sa.Column('display_name', sa.JSON(), nullable=False),
            sa.Column('price', sa.Numeric(20, 2), nullable=False, server_default='0'),
            sa.Column('product_limit', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('coupon_type_limit', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('features', sa.JSON(), nullable=False),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            *timestamps(),
            sa.CheckConstraint('price >= 0', name='ck_subscription_plan_price_non_negative'),
        )

    if 'merchant_subscriptions' not in existing:
        op.create_table(
            'merchant_subscriptions',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True),
            sa.Column('plan_id', sa.Integer(), sa.ForeignKey('subscription_plans.id'), nullable=False, index=True),
            sa.Column('status', sa.String(20), nullable=False, server_default='trial'),
            sa.Column('trial_start', sa.DateTime(), nullable=True),
            sa.Column('trial_end', sa.DateTime(), nullable=True),
            sa.Column('current_period_start', sa.DateTime(), nullable=True),
            sa.Column('current_period_end', sa.DateTime(), nullable=True),
            sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('canceled_at', sa.DateTime(), nullable=True),
            sa.Column('locked_at', sa.DateTime(), nullable=True),
            sa.Column('data_retention_until', sa.DateTime(), nullable=True),
            *timestamps(),
        )
        op.create_index(
            'uq_merchant_subscriptions_tenant_open', 'merchant_subscriptions', ['tenant_id'],
            unique=True,
            postgresql_where=sa.text("status <> 'locked'"),
            sqlite_where=sa.text("status <> 'locked'"),
        )
        op.create_index(
            'ix_merchant_subscriptions_status_period_end', 'merchant_subscriptions',
            ['status', 'current_period_end'],
        )
        op.create_index(
            'ix_merchant_subscriptions_status_trial_end', 'merchant_subscriptions',
            ['status', 'trial_end'],
        )

    if 'subscription_invoices' not in existing:
        op.create_table(
            'subscription_invoices',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True),
            sa.Column('subscription_id', sa.Integer(), sa.ForeignKey('merchant_subscriptions.id', ondelete='CASCADE'), nullable=False, index=True),
            sa.Column('plan_id', sa.Integer(), sa.ForeignKey('subscription_plans.id'), nullable=False),
            sa.Column('amount', sa.Numeric(20, 2), nullable=False),
            sa.Column('status', sa.String(20), nullable=False),
            sa.Column('payment_method', sa.String(30), nullable=False, server_default='wallet'),
            sa.Column('period_start', sa.DateTime(), nullable=False),
            sa.Column('period_end', sa.DateTime(), nullable=False),
            sa.Column('paid_at', sa.DateTime(), nullable=True),
            sa.Column('failure_reason', sa.String(100), nullable=True),
            sa.Column('ledger_entry_ref', sa.String(64), nullable=True),
            *timestamps(),
            sa.UniqueConstraint('subscription_id', 'period_start', name='uq_subscription_invoice_period'),
        )

    if 'wallets' not in existing:
        op.create_table(
            'wallets',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False),
            sa.Column('balance', sa.Numeric(20, 2), nullable=False, server_default='0'),
            *timestamps(),
            sa.UniqueConstraint('tenant_id', name='uq_wallet_tenant'),
            sa.CheckConstraint('balance >= 0', name='ck_wallet_balance_non_negative'),
        )

    if 'wallet_ledger_entries' not in existing:
        op.create_table(
            'wallet_ledger_entries',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True),
            sa.Column('entry_type', sa.String(30), nullable=False),
            sa.Column('amount', sa.Numeric(20, 2), nullable=False),
            sa.Column('balance_after', sa.Numeric(20, 2), nullable=False),
            sa.Column('idempotency_key', sa.String(200), nullable=False),
            sa.Column('reference', sa.String(64), nullable=True),
            sa.Column('description', sa.Text(), nullable=True),
            *timestamps(),
            sa.UniqueConstraint('idempotency_key', name='uq_ledger_entry_idempotency_key'),
        )

    if 'notifications' not in existing:
        op.create_table(
            'notifications',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('user_id', sa.String(64), nullable=False, index=True),
            sa.Column('type', sa.String(50), nullable=False),
            sa.Column('data', sa.JSON(), nullable=False),
            sa.Column('read', sa.Boolean(), nullable=False, server_default=sa.false()),
            *timestamps(),
        )

    if 'cron_logs' not in existing:
        op.create_table(
            'cron_logs',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('job_name', sa.String(100), nullable=False),
            sa.Column('executed_at', sa.DateTime(), nullable=False),
            sa.Column('result', sa.JSON(), nullable=False),
            sa.Column('success', sa.Boolean(), nullable=False, server_default=sa.true()),
        )
        op.create_index('ix_cron_logs_job_name_executed_at', 'cron_logs', ['job_name', 'executed_at'])


def downgrade() -> None:
    for table in (
        'cron_logs', 'notifications', 'wallet_ledger_entries', 'wallets',
        'subscription_invoices', 'merchant_subscriptions', 'subscription_plans', 'tenants',
    ):
        op.drop_table(table)
