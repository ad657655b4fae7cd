"""order lifecycle, wallets and settlement ledger

Revision ID: c3d4e5f6a7b8
Revises:
Create Date: 2026-10-18 09:12:41.205113

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c3d4e5f6a7b8'
down_revision = None
branch_labels = None
depends_on = None


def _create_index_once(insp, name, table, cols, unique=False):
    try:
        idx = {i['name'] for i in insp.get_indexes(table)}
    except Exception:
        idx = set()
    if name not in idx:
        op.create_index(name, table, cols, unique=unique)


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    tables = set(insp.get_table_names())

    if 'users' not in tables:
        op.create_table(
            'users',
            sa.Column('id', sa.String(length=64), primary_key=True),
            sa.Column('name', sa.String(length=120), nullable=False, server_default=''),
            sa.Column('email', sa.String(length=255), nullable=True),
            sa.Column('phone', sa.String(length=32), nullable=True),
            sa.Column('role', sa.String(length=32), nullable=False, server_default='customer'),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )
    _create_index_once(insp, 'ix_users_email', 'users', ['email'], unique=True)
    _create_index_once(insp, 'ix_users_phone', 'users', ['phone'], unique=True)

    if 'businesses' not in tables:
        op.create_table(
            'businesses',
            sa.Column('id', sa.String(length=64), primary_key=True),
            sa.Column('owner_id', sa.String(length=64), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('name', sa.String(length=160), nullable=False, server_default=''),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )
    _create_index_once(insp, 'ix_businesses_owner_id', 'businesses', ['owner_id'])

    if 'orders' not in tables:
        op.create_table(
            'orders',
            sa.Column('id', sa.String(length=64), primary_key=True),
            sa.Column('customer_id', sa.String(length=64), nullable=False),
            sa.Column('business_id', sa.String(length=64), nullable=False),
            sa.Column('delivery_person_id', sa.String(length=64), nullable=True),
            sa.Column('subtotal_minor', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('delivery_fee_minor', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('total_minor', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('platform_fee_minor', sa.Integer(), nullable=True),
            sa.Column('business_earnings_minor', sa.Integer(), nullable=True),
            sa.Column('delivery_earnings_minor', sa.Integer(), nullable=True),
            sa.Column('commission_snapshot_json', sa.Text(), nullable=True),
            sa.Column('payment_method', sa.String(length=16), nullable=False, server_default='card'),
            sa.Column('status', sa.String(length=24), nullable=False, server_default='pending'),
            sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.Column('assigned_at', sa.DateTime(), nullable=True),
            sa.Column('delivered_at', sa.DateTime(), nullable=True),
            sa.Column('cancelled_at', sa.DateTime(), nullable=True),
            sa.Column('cancelled_by', sa.String(length=64), nullable=True),
            sa.Column('cancellation_reason', sa.String(length=240), nullable=True),
            sa.CheckConstraint('total_minor = subtotal_minor + delivery_fee_minor', name='ck_orders_total_parts'),
            sa.CheckConstraint('subtotal_minor >= 0 AND delivery_fee_minor >= 0', name='ck_orders_money_non_negative'),
        )
    _create_index_once(insp, 'ix_orders_customer_id', 'orders', ['customer_id'])
    _create_index_once(insp, 'ix_orders_business_id', 'orders', ['business_id'])
    _create_index_once(insp, 'ix_orders_delivery_person_id', 'orders', ['delivery_person_id'])
    _create_index_once(insp, 'ix_orders_status', 'orders', ['status'])
    _create_index_once(insp, 'ix_orders_created_at', 'orders', ['created_at'])

    if 'payments' not in tables:
        op.create_table(
            'payments',
            sa.Column('id', sa.String(length=64), primary_key=True),
            sa.Column('order_id', sa.String(length=64), sa.ForeignKey('orders.id'), nullable=False),
            sa.Column('amount_minor', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('method', sa.String(length=16), nullable=False, server_default='card'),
            sa.Column('status', sa.String(length=24), nullable=False, server_default='pending'),
            sa.Column('provider_ref', sa.String(length=120), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )
    _create_index_once(insp, 'ix_payments_order_id', 'payments', ['order_id'], unique=True)

    if 'wallets' not in tables:
        op.create_table(
            'wallets',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('user_id', sa.String(length=64), nullable=False),
            sa.Column('balance_minor', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('pending_balance_minor', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('cash_owed_minor', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('total_earned_minor', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('total_withdrawn_minor', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.CheckConstraint('balance_minor >= 0', name='ck_wallets_balance_non_negative'),
            sa.CheckConstraint('cash_owed_minor >= 0', name='ck_wallets_cash_owed_non_negative'),
        )
    _create_index_once(insp, 'ix_wallets_user_id', 'wallets', ['user_id'], unique=True)

    if 'transactions' not in tables:
        op.create_table(
            'transactions',
            sa.Column('id', sa.String(length=64), primary_key=True),
            sa.Column('wallet_id', sa.Integer(), sa.ForeignKey('wallets.id'), nullable=False),
            sa.Column('user_id', sa.String(length=64), nullable=False),
            sa.Column('order_id', sa.String(length=64), nullable=True),
            sa.Column('type', sa.String(length=32), nullable=False),
            sa.Column('amount_minor', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('balance_after_minor', sa.Integer(), nullable=True),
            sa.Column('cash_owed_after_minor', sa.Integer(), nullable=True),
            sa.Column('description', sa.String(length=240), nullable=True),
            sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
            sa.Column('metadata_json', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.UniqueConstraint('order_id', 'user_id', 'type', name='uq_transactions_order_user_type'),
            sa.CheckConstraint('amount_minor >= 0', name='ck_transactions_amount_non_negative'),
        )
    _create_index_once(insp, 'ix_transactions_wallet_id', 'transactions', ['wallet_id'])
    _create_index_once(insp, 'ix_transactions_user_id', 'transactions', ['user_id'])
    _create_index_once(insp, 'ix_transactions_order_id', 'transactions', ['order_id'])
    _create_index_once(insp, 'ix_transactions_created_at', 'transactions', ['created_at'])

    if 'order_events' not in tables:
        op.create_table(
            'order_events',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('order_id', sa.String(length=64), nullable=False),
            sa.Column('from_status', sa.String(length=24), nullable=False, server_default=''),
            sa.Column('to_status', sa.String(length=24), nullable=False),
            sa.Column('actor_id', sa.String(length=64), nullable=True),
            sa.Column('actor_role', sa.String(length=32), nullable=False, server_default='system'),
            sa.Column('idempotency_key', sa.String(length=160), nullable=False),
            sa.Column('note', sa.String(length=240), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.UniqueConstraint('idempotency_key', name='uq_order_events_key'),
        )
    _create_index_once(insp, 'ix_order_events_order_id', 'order_events', ['order_id'])
    _create_index_once(insp, 'ix_order_events_created_at', 'order_events', ['created_at'])

    if 'notifications' not in tables:
        op.create_table(
            'notifications',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('user_id', sa.String(length=64), nullable=False),
            sa.Column('order_id', sa.String(length=64), nullable=True),
            sa.Column('channel', sa.String(length=32), nullable=False, server_default='push'),
            sa.Column('title', sa.String(length=160), nullable=True),
            sa.Column('message', sa.Text(), nullable=False),
            sa.Column('status', sa.String(length=24), nullable=False, server_default='queued'),
            sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('provider', sa.String(length=64), nullable=True),
            sa.Column('provider_ref', sa.String(length=120), nullable=True),
            sa.Column('last_error', sa.String(length=240), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('sent_at', sa.DateTime(), nullable=True),
            sa.Column('meta', sa.Text(), nullable=True),
        )
    _create_index_once(insp, 'ix_notifications_user_id', 'notifications', ['user_id'])
    _create_index_once(insp, 'ix_notifications_order_id', 'notifications', ['order_id'])
    _create_index_once(insp, 'ix_notifications_status', 'notifications', ['status'])

    if 'platform_events' not in tables:
        op.create_table(
            'platform_events',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('event_type', sa.String(length=80), nullable=False),
            sa.Column('actor_user_id', sa.String(length=64), nullable=True),
            sa.Column('subject_type', sa.String(length=80), nullable=True),
            sa.Column('subject_id', sa.String(length=120), nullable=True),
            sa.Column('request_id', sa.String(length=80), nullable=True),
            sa.Column('idempotency_key', sa.String(length=180), nullable=True),
            sa.Column('severity', sa.String(length=16), nullable=False, server_default='INFO'),
            sa.Column('metadata_json', sa.Text(), nullable=True),
        )
    _create_index_once(insp, 'ix_platform_events_created_at', 'platform_events', ['created_at'])
    _create_index_once(insp, 'ix_platform_events_event_type', 'platform_events', ['event_type'])
    _create_index_once(insp, 'ix_platform_events_actor_user_id', 'platform_events', ['actor_user_id'])
    _create_index_once(insp, 'ix_platform_events_subject_type', 'platform_events', ['subject_type'])
    _create_index_once(insp, 'ix_platform_events_subject_id', 'platform_events', ['subject_id'])
    _create_index_once(insp, 'ix_platform_events_request_id', 'platform_events', ['request_id'])
    _create_index_once(insp, 'ix_platform_events_idempotency_key', 'platform_events', ['idempotency_key'], unique=True)
    _create_index_once(insp, 'ix_platform_events_severity', 'platform_events', ['severity'])

    if 'idempotency_keys' not in tables:
        op.create_table(
            'idempotency_keys',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('key', sa.String(length=128), nullable=False),
            sa.Column('scope', sa.String(length=128), nullable=False, server_default=''),
            sa.Column('user_id', sa.String(length=64), nullable=True),
            sa.Column('request_hash', sa.String(length=64), nullable=False, server_default=''),
            sa.Column('response_body_json', sa.Text(), nullable=True),
            sa.Column('response_code', sa.Integer(), nullable=False, server_default='200'),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.UniqueConstraint('scope', 'key', name='uq_idempotency_scope_key'),
        )
    _create_index_once(insp, 'ix_idempotency_keys_key', 'idempotency_keys', ['key'])

    if 'reconciliation_reports' not in tables:
        op.create_table(
            'reconciliation_reports',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('scope', sa.String(length=64), nullable=False, server_default='quick_audit'),
            sa.Column('overall_status', sa.String(length=16), nullable=False, server_default='PASSED'),
            sa.Column('summary_json', sa.Text(), nullable=True),
            sa.Column('failed_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('created_by', sa.String(length=64), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )
    _create_index_once(insp, 'ix_reconciliation_reports_created_at', 'reconciliation_reports', ['created_at'])

    if 'job_runs' not in tables:
        op.create_table(
            'job_runs',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('job_name', sa.String(length=64), nullable=False),
            sa.Column('ran_at', sa.DateTime(), nullable=False),
            sa.Column('ok', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('processed', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('duration_ms', sa.Integer(), nullable=True),
            sa.Column('error', sa.Text(), nullable=True),
        )
    _create_index_once(insp, 'ix_job_runs_job_name', 'job_runs', ['job_name'])
    _create_index_once(insp, 'ix_job_runs_ran_at', 'job_runs', ['ran_at'])
    _create_index_once(insp, 'ix_job_runs_ok', 'job_runs', ['ok'])


def downgrade():
    for table in (
        'job_runs',
        'reconciliation_reports',
        'idempotency_keys',
        'platform_events',
        'notifications',
        'order_events',
        'transactions',
        'wallets',
        'payments',
        'orders',
        'businesses',
        'users',
    ):
        op.drop_table(table)
