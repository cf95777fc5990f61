"""Create preorders, subscriptions, webhook_logs and processed_webhook_events

Revision ID: 001
Revises:
Create Date: 2025-06-02 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'preorders',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('user_id', sa.String(length=255), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('color', sa.String(length=50), nullable=True),
        sa.Column('price_id', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='initiated'),
        sa.Column('preorder_number', sa.String(length=50), nullable=True),
        sa.Column('locale', sa.String(length=10), nullable=True),
        sa.Column('referrer_code', sa.String(length=100), nullable=True),
        sa.Column('session_id', sa.String(length=255), nullable=True),
        sa.Column('payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=True),
        sa.Column('payment_error', sa.Text(), nullable=True),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('billing_name', sa.String(length=255), nullable=True),
        sa.Column('billing_address_line1', sa.String(length=255), nullable=True),
        sa.Column('billing_address_line2', sa.String(length=255), nullable=True),
        sa.Column('billing_city', sa.String(length=100), nullable=True),
        sa.Column('billing_state', sa.String(length=100), nullable=True),
        sa.Column('billing_postal_code', sa.String(length=20), nullable=True),
        sa.Column('billing_country', sa.String(length=2), nullable=True),
        sa.Column('marketing_event_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('commerce_order_id', sa.String(length=255), nullable=True),
        sa.Column('commerce_order_number', sa.String(length=50), nullable=True),
        sa.Column('commerce_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('commerce_error', sa.Text(), nullable=True),
        sa.Column('commerce_last_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('referral_reward_cents', sa.Integer(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_preorders_user_id', 'preorders', ['user_id'])
    op.create_index('ix_preorders_email', 'preorders', ['email'])
    op.create_index('ix_preorders_status', 'preorders', ['status'])

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('stripe_subscription_id', sa.String(length=255), nullable=False),
        sa.Column('stripe_customer_id', sa.String(length=255), nullable=False),
        sa.Column('stripe_price_id', sa.String(length=255), nullable=True),
        sa.Column('user_id', sa.String(length=255), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('plan_type', sa.String(length=50), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('trial_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('trial_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('last_event_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_subscriptions_id', 'subscriptions', ['id'])
    op.create_index('ix_subscriptions_stripe_subscription_id', 'subscriptions', ['stripe_subscription_id'], unique=True)
    op.create_index('ix_subscriptions_stripe_customer_id', 'subscriptions', ['stripe_customer_id'])
    op.create_index('ix_subscriptions_user_id', 'subscriptions', ['user_id'])

    op.create_table(
        'webhook_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('provider', sa.String(length=50), nullable=False, server_default='stripe'),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('provider_event_id', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='started'),
        sa.Column('attempt', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('preorder_id', sa.String(length=64), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('detail', sa.JSON(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_webhook_logs_event_type', 'webhook_logs', ['event_type'])
    op.create_index('ix_webhook_logs_provider_event_id', 'webhook_logs', ['provider_event_id'])
    op.create_index('ix_webhook_logs_preorder_id', 'webhook_logs', ['preorder_id'])
    # At most one success per provider event
    op.create_index(
        'uq_webhook_logs_success_per_event',
        'webhook_logs',
        ['provider_event_id'],
        unique=True,
        postgresql_where=sa.text("status = 'success'"),
    )

    op.create_table(
        'processed_webhook_events',
        sa.Column('provider_event_id', sa.String(length=255), primary_key=True),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('outcome', sa.String(length=20), nullable=False, server_default='in_progress'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('lease_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('summary', sa.JSON(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('seen_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_processed_webhook_events_outcome', 'processed_webhook_events', ['outcome'])


def downgrade() -> None:
    op.drop_index('ix_processed_webhook_events_outcome', table_name='processed_webhook_events')
    op.drop_table('processed_webhook_events')

    op.drop_index('uq_webhook_logs_success_per_event', table_name='webhook_logs')
    op.drop_index('ix_webhook_logs_preorder_id', table_name='webhook_logs')
    op.drop_index('ix_webhook_logs_provider_event_id', table_name='webhook_logs')
    op.drop_index('ix_webhook_logs_event_type', table_name='webhook_logs')
    op.drop_table('webhook_logs')

    op.drop_index('ix_subscriptions_user_id', table_name='subscriptions')
    op.drop_index('ix_subscriptions_stripe_customer_id', table_name='subscriptions')
    op.drop_index('ix_subscriptions_stripe_subscription_id', table_name='subscriptions')
    op.drop_index('ix_subscriptions_id', table_name='subscriptions')
    op.drop_table('subscriptions')

    op.drop_index('ix_preorders_status', table_name='preorders')
    op.drop_index('ix_preorders_email', table_name='preorders')
    op.drop_index('ix_preorders_user_id', table_name='preorders')
    op.drop_table('preorders')
