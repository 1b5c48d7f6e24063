"""create_reconciliation_tables

Revision ID: 3c1f9a2e7b10
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3c1f9a2e7b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=None if nullable else sa.text('now()'), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('customer_id', sa.String(length=36), nullable=True, comment='客户ID'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='履约状态: pending/paid/shipped/delivered/cancelled'),
        sa.Column('payment_status', sa.String(length=30), nullable=False, server_default='unpaid', comment='派生支付状态'),
        sa.Column('total_amount', sa.BigInteger(), nullable=False, comment='订单总额（最小货币单位）'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='usd'),
        sa.Column('payment_reference', sa.String(length=200), nullable=True, comment='支付渠道 payment intent ID'),
        sa.Column('affiliate_code', sa.String(length=64), nullable=True),
        _ts('created_at'),
        _ts('updated_at'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])
    op.create_index('ix_orders_payment_reference', 'orders', ['payment_reference'])

    op.create_table(
        'refunds',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False, comment='退款金额（最小货币单位）'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='pending/processed/rejected/failed'),
        sa.Column('source', sa.String(length=20), nullable=False, comment='processor/manual'),
        sa.Column('type', sa.String(length=20), nullable=False, server_default='partial', comment='full/partial'),
        sa.Column('reason_code', sa.String(length=40), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('provider_refund_id', sa.String(length=200), nullable=True),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        _ts('created_at'),
        _ts('processed_at', nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider_refund_id'),
    )
    op.create_index('ix_refunds_order_created', 'refunds', ['order_id', 'created_at'])

    op.create_table(
        'processed_webhook_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('event_id', sa.String(length=200), nullable=False, comment='渠道事件ID'),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('source', sa.String(length=50), nullable=False),
        _ts('processed_at'),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id'),
    )

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('actor', sa.String(length=100), nullable=True),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('entity_type', sa.String(length=50), nullable=False),
        sa.Column('entity_id', sa.String(length=100), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='原始渠道状态等取证信息'),
        _ts('created_at'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_entity', 'audit_logs', ['entity_type', 'entity_id'])

    op.create_table(
        'affiliates',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('customer_id', sa.String(length=36), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('affiliate_code', sa.String(length=64), nullable=False, comment='推广码（大写）'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='pending/active/suspended'),
        sa.Column('commission_type', sa.String(length=10), nullable=True),
        sa.Column('commission_value', sa.Integer(), nullable=True),
        sa.Column('total_earnings', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('pending_balance', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('paid_balance', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_clicks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_referrals', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_sales', sa.BigInteger(), nullable=False, server_default='0'),
        _ts('created_at'),
        _ts('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('affiliate_code'),
    )
    op.create_index('ix_affiliates_customer_id', 'affiliates', ['customer_id'])

    op.create_table(
        'affiliate_payout_accounts',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('affiliate_id', sa.String(length=36), nullable=False),
        sa.Column('external_account_id', sa.String(length=100), nullable=True),
        sa.Column('payouts_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('details_submitted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('country', sa.String(length=2), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=True),
        _ts('updated_at'),
        sa.ForeignKeyConstraint(['affiliate_id'], ['affiliates.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('affiliate_id'),
    )

    op.create_table(
        'affiliate_clicks',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('affiliate_id', sa.String(length=36), nullable=False),
        sa.Column('session_id', sa.String(length=64), nullable=False),
        sa.Column('ip_hash', sa.String(length=64), nullable=True, comment='加盐哈希后的 IP，不存原始 IP'),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('landing_url', sa.Text(), nullable=True),
        sa.Column('referrer', sa.Text(), nullable=True),
        sa.Column('utm_source', sa.String(length=255), nullable=True),
        sa.Column('utm_medium', sa.String(length=255), nullable=True),
        sa.Column('utm_campaign', sa.String(length=255), nullable=True),
        sa.Column('friends_family', sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts('created_at'),
        sa.ForeignKeyConstraint(['affiliate_id'], ['affiliates.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id'),
    )
    op.create_index('ix_affiliate_clicks_affiliate_id', 'affiliate_clicks', ['affiliate_id'])

    op.create_table(
        'affiliate_invites',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('invite_code', sa.String(length=64), nullable=False),
        sa.Column('target_email', sa.String(length=255), nullable=True),
        sa.Column('target_phone', sa.String(length=50), nullable=True),
        sa.Column('max_uses', sa.Integer(), nullable=True, server_default='1', comment='为空表示不限次数'),
        sa.Column('times_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('used_by_affiliate_id', sa.String(length=36), nullable=True),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        _ts('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invite_code'),
    )

    op.create_table(
        'affiliate_invite_usages',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('invite_id', sa.String(length=36), nullable=False),
        sa.Column('affiliate_id', sa.String(length=36), nullable=False),
        _ts('redeemed_at'),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['invite_id'], ['affiliate_invites.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_affiliate_invite_usages_invite_id', 'affiliate_invite_usages', ['invite_id'])

    op.create_table(
        'affiliate_referrals',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('affiliate_id', sa.String(length=36), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=False, comment='每个订单至多一条佣金'),
        sa.Column('click_id', sa.String(length=36), nullable=True),
        sa.Column('attribution_type', sa.String(length=20), nullable=False, server_default='cookie'),
        sa.Column('friends_family', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('order_amount', sa.BigInteger(), nullable=False),
        sa.Column('commission_type', sa.String(length=10), nullable=False),
        sa.Column('commission_rate', sa.Integer(), nullable=False, comment='创建时的比例/固定额，不再重算'),
        sa.Column('commission_amount', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='pending/approved/paid/reversed'),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reversed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reversal_reason', sa.Text(), nullable=True),
        _ts('created_at'),
        sa.ForeignKeyConstraint(['affiliate_id'], ['affiliates.id']),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id'),
    )
    op.create_index('ix_affiliate_referrals_affiliate_status', 'affiliate_referrals', ['affiliate_id', 'status', 'created_at'])
    op.create_index('ix_affiliate_referrals_status_created', 'affiliate_referrals', ['status', 'created_at'])

    op.create_table(
        'affiliate_payouts',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('affiliate_id', sa.String(length=36), nullable=False),
        sa.Column('batch_id', sa.String(length=50), nullable=True, comment='打款批次ID，提现申请未归批时为空'),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='pending/approved/paid/rejected/failed'),
        sa.Column('transfer_reference', sa.String(length=200), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('requested_by', sa.String(length=100), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        _ts('created_at'),
        sa.ForeignKeyConstraint(['affiliate_id'], ['affiliates.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('batch_id', 'affiliate_id', name='uq_affiliate_payouts_batch_affiliate'),
    )
    op.create_index('ix_affiliate_payouts_affiliate_id', 'affiliate_payouts', ['affiliate_id'])
    op.create_index('ix_affiliate_payouts_batch_id', 'affiliate_payouts', ['batch_id'])

    op.create_table(
        'affiliate_payout_referrals',
        sa.Column('payout_id', sa.String(length=36), nullable=False),
        sa.Column('referral_id', sa.String(length=36), nullable=False),
        sa.ForeignKeyConstraint(['payout_id'], ['affiliate_payouts.id']),
        sa.ForeignKeyConstraint(['referral_id'], ['affiliate_referrals.id']),
        sa.PrimaryKeyConstraint('payout_id', 'referral_id'),
    )
    op.create_index('ix_affiliate_payout_referrals_referral_id', 'affiliate_payout_referrals', ['referral_id'])


def downgrade() -> None:
    op.drop_table('affiliate_payout_referrals')
    op.drop_table('affiliate_payouts')
    op.drop_table('affiliate_referrals')
    op.drop_table('affiliate_invite_usages')
    op.drop_table('affiliate_invites')
    op.drop_table('affiliate_clicks')
    op.drop_table('affiliate_payout_accounts')
    op.drop_table('affiliates')
    op.drop_table('audit_logs')
    op.drop_table('processed_webhook_events')
    op.drop_table('refunds')
    op.drop_table('orders')
