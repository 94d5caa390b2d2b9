"""Initial billing schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(precision=20, scale=7)
LIVE_PREDICATE = sa.text("status IN ('active', 'past_due')")


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, comment='Row creation time (UTC)'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, comment='Last modification time (UTC)'),
    ]


def upgrade() -> None:
    # Enums are stored by value as VARCHAR(20)
    op.create_table('users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('wallet_address', sa.String(length=56), nullable=False, comment='Stellar account id (G...)'),
        sa.Column('display_name', sa.String(length=100), nullable=True, comment='Public display name'),
        sa.Column('role', sa.String(length=20), nullable=False, comment='Account role'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('wallet_address')
    )

    op.create_table('creators',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False, comment="Owning user; payouts go to this user's wallet"),
        sa.Column('is_active', sa.Boolean(), nullable=False, comment='Whether the creator accepts new subscriptions'),
        sa.Column('subscriber_count', sa.Integer(), nullable=False, comment='Count of active subscriptions'),
        sa.Column('total_earnings', MONEY, nullable=False, comment='Sum of net credits from completed transactions'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id')
    )

    op.create_table('tiers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('creator_id', sa.Integer(), nullable=False, comment='Creator offering the tier'),
        sa.Column('name', sa.String(length=100), nullable=False, comment='Tier name'),
        sa.Column('price', MONEY, nullable=False, comment='Price per billing period'),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['creator_id'], ['creators.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_tier_creator', 'tiers', ['creator_id'])

    op.create_table('subscriptions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('subscriber_id', sa.Integer(), nullable=False, comment='Paying user'),
        sa.Column('creator_id', sa.Integer(), nullable=False, comment='Creator receiving payments'),
        sa.Column('tier_id', sa.Integer(), nullable=True, comment='Tier subscribed to, if any'),
        sa.Column('amount', MONEY, nullable=False, comment='Amount charged per billing period'),
        sa.Column('status', sa.String(length=20), nullable=False, comment='Lifecycle status'),
        sa.Column('started_at', sa.DateTime(), nullable=False, comment='First successful payment time'),
        sa.Column('next_billing_at', sa.DateTime(), nullable=False, comment='Next renewal due date (anchored cycle)'),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True, comment='Cancellation time'),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True, comment='Reason given at cancellation'),
        sa.Column('expired_at', sa.DateTime(), nullable=True, comment='Time the grace period ran out'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['creator_id'], ['creators.id']),
        sa.ForeignKeyConstraint(['subscriber_id'], ['users.id']),
        sa.ForeignKeyConstraint(['tier_id'], ['tiers.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'uq_subscription_live_pair', 'subscriptions', ['subscriber_id', 'creator_id'],
        unique=True, postgresql_where=LIVE_PREDICATE, sqlite_where=LIVE_PREDICATE
    )
    op.create_index('idx_subscription_status_next_billing', 'subscriptions', ['status', 'next_billing_at'])
    op.create_index('idx_subscription_creator_status', 'subscriptions', ['creator_id', 'status'])

    op.create_table('transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('sender_id', sa.Integer(), nullable=True, comment='Paying user (null for unknown wallets and platform payouts)'),
        sa.Column('recipient_id', sa.Integer(), nullable=False, comment='Receiving user'),
        sa.Column('subscription_id', sa.Integer(), nullable=True, comment='Subscription funded by this payment'),
        sa.Column('type', sa.String(length=20), nullable=False, comment='Payment kind'),
        sa.Column('amount', MONEY, nullable=False, comment='Gross amount'),
        sa.Column('platform_fee', MONEY, nullable=False, comment='Fee computed once at creation; authoritative thereafter'),
        sa.Column('tx_hash', sa.String(length=64), nullable=True, comment='Chain transaction hash (idempotency key)'),
        sa.Column('status', sa.String(length=20), nullable=False, comment='Payment status'),
        sa.Column('memo', sa.Text(), nullable=True, comment='Memo or tip message'),
        sa.Column('settled_at', sa.DateTime(), nullable=True, comment='When earnings were credited (and, for renewals, the billing clock advanced)'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['recipient_id'], ['users.id']),
        sa.ForeignKeyConstraint(['sender_id'], ['users.id']),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tx_hash')
    )
    op.create_index('idx_transaction_recipient_created', 'transactions', ['recipient_id', 'created_at'])
    op.create_index('idx_transaction_sender_created', 'transactions', ['sender_id', 'created_at'])
    op.create_index('idx_transaction_subscription_type_status', 'transactions', ['subscription_id', 'type', 'status'])
    op.create_index('idx_transaction_unsettled', 'transactions', ['type', 'status', 'settled_at'])

    op.create_table('platform_earnings',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('transaction_id', sa.Integer(), nullable=False, comment='Transaction that generated the fee'),
        sa.Column('amount', MONEY, nullable=False, comment='Fee amount'),
        sa.Column('fee_type', sa.String(length=20), nullable=False, comment='Payment kind the fee came from'),
        sa.Column('status', sa.String(length=20), nullable=False, comment='collected or withdrawn'),
        sa.Column('withdrawn_at', sa.DateTime(), nullable=True),
        sa.Column('withdrawal_reference', sa.String(length=128), nullable=True, comment='Payout reference (destination or external id)'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_platform_earning_status_created', 'platform_earnings', ['status', 'created_at'])
    op.create_index('idx_platform_earning_transaction', 'platform_earnings', ['transaction_id'])

    op.create_table('notifications',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False, comment='Recipient'),
        sa.Column('type', sa.String(length=50), nullable=False, comment='Notification kind'),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False, comment='Typed payload rendered as JSON'),
        sa.Column('subscription_id', sa.Integer(), nullable=True, comment='Related subscription, copied from the payload'),
        sa.Column('dedup_key', sa.String(length=200), nullable=True, comment='Idempotency key for one-time notifications'),
        sa.Column('is_read', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('dedup_key')
    )
    op.create_index('idx_notification_user_created', 'notifications', ['user_id', 'created_at'])
    op.create_index('idx_notification_subscription_type', 'notifications', ['subscription_id', 'type'])

    op.create_table('worker_locks',
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('owner', sa.String(length=64), nullable=False, comment='Token of the holder'),
        sa.Column('acquired_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False, comment='Lease end; an expired lease may be taken over'),
        sa.PrimaryKeyConstraint('name')
    )


def downgrade() -> None:
    op.drop_table('worker_locks')
    op.drop_index('idx_notification_subscription_type', table_name='notifications')
    op.drop_index('idx_notification_user_created', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('idx_platform_earning_transaction', table_name='platform_earnings')
    op.drop_index('idx_platform_earning_status_created', table_name='platform_earnings')
    op.drop_table('platform_earnings')
    op.drop_index('idx_transaction_unsettled', table_name='transactions')
    op.drop_index('idx_transaction_subscription_type_status', table_name='transactions')
    op.drop_index('idx_transaction_sender_created', table_name='transactions')
    op.drop_index('idx_transaction_recipient_created', table_name='transactions')
    op.drop_table('transactions')
    op.drop_index('idx_subscription_creator_status', table_name='subscriptions')
    op.drop_index('idx_subscription_status_next_billing', table_name='subscriptions')
    op.drop_index('uq_subscription_live_pair', table_name='subscriptions')
    op.drop_table('subscriptions')
    op.drop_index('idx_tier_creator', table_name='tiers')
    op.drop_table('tiers')
    op.drop_table('creators')
    op.drop_table('users')
