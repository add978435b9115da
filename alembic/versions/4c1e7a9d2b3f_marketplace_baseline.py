"""marketplace_baseline

Revision ID: 4c1e7a9d2b3f
Revises: 
Create Date: 2026-10-16 09:12:41.507312

Users, subscription ledger, gigs, applications, escrow orders and the
notification outbox.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4c1e7a9d2b3f'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('full_name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=True),
        sa.Column('role', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_users'))
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
    op.create_index(op.f('ix_users_role'), 'users', ['role'], unique=False)

    op.create_table('subscriptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(), nullable=False),
        sa.Column('plan_type', sa.String(), nullable=True),
        sa.Column('duration', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('remaining_gig_slots', sa.Integer(), nullable=False),
        sa.Column('remaining_application_slots', sa.Integer(), nullable=False),
        sa.Column('unlimited', sa.Boolean(), nullable=False),
        sa.Column('is_priority_eligible', sa.Boolean(), nullable=False),
        sa.Column('is_first_gig_consumed', sa.Boolean(), nullable=False),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('stripe_customer_id', sa.String(), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.CheckConstraint('remaining_application_slots >= 0', name=op.f('ck_subscriptions_application_slots_non_negative')),
        sa.CheckConstraint('remaining_gig_slots >= 0', name=op.f('ck_subscriptions_gig_slots_non_negative')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name=op.f('fk_subscriptions_user_id_users')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_subscriptions')),
        sa.UniqueConstraint('user_id', name=op.f('uq_subscriptions_user_id'))
    )
    op.create_index(op.f('ix_subscriptions_id'), 'subscriptions', ['id'], unique=False)
    op.create_index(op.f('ix_subscriptions_stripe_customer_id'), 'subscriptions', ['stripe_customer_id'], unique=False)
    op.create_index(op.f('ix_subscriptions_stripe_subscription_id'), 'subscriptions', ['stripe_subscription_id'], unique=False)

    op.create_table('gigs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('budget', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('filled_count', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('escrow_required', sa.Boolean(), nullable=False),
        sa.Column('is_first_gig', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('budget > 0', name=op.f('ck_gigs_budget_positive')),
        sa.CheckConstraint('filled_count >= 0 AND filled_count <= quantity', name=op.f('ck_gigs_filled_within_quantity')),
        sa.CheckConstraint('quantity >= 1', name=op.f('ck_gigs_quantity_positive')),
        sa.ForeignKeyConstraint(['company_id'], ['users.id'], name=op.f('fk_gigs_company_id_users')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_gigs'))
    )
    op.create_index('idx_gig_company_created', 'gigs', ['company_id', 'created_at'], unique=False)
    op.create_index(op.f('ix_gigs_company_id'), 'gigs', ['company_id'], unique=False)
    op.create_index(op.f('ix_gigs_id'), 'gigs', ['id'], unique=False)
    op.create_index(op.f('ix_gigs_status'), 'gigs', ['status'], unique=False)

    op.create_table('applications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('gig_id', sa.Integer(), nullable=False),
        sa.Column('freelancer_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('iterations', sa.Integer(), nullable=False),
        sa.Column('is_priority', sa.Boolean(), nullable=False),
        sa.Column('cover_letter', sa.Text(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('current_escrow_order_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('iterations >= 1 AND iterations <= 20', name=op.f('ck_applications_iterations_range')),
        sa.ForeignKeyConstraint(['freelancer_id'], ['users.id'], name=op.f('fk_applications_freelancer_id_users')),
        sa.ForeignKeyConstraint(['gig_id'], ['gigs.id'], name=op.f('fk_applications_gig_id_gigs')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_applications')),
        sa.UniqueConstraint('gig_id', 'freelancer_id', name='uq_application_gig_freelancer')
    )
    op.create_index('idx_application_gig_status', 'applications', ['gig_id', 'status'], unique=False)
    op.create_index(op.f('ix_applications_freelancer_id'), 'applications', ['freelancer_id'], unique=False)
    op.create_index(op.f('ix_applications_gig_id'), 'applications', ['gig_id'], unique=False)
    op.create_index(op.f('ix_applications_id'), 'applications', ['id'], unique=False)
    op.create_index(op.f('ix_applications_status'), 'applications', ['status'], unique=False)

    op.create_table('escrow_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('application_id', sa.Integer(), nullable=False),
        sa.Column('gig_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('platform_fee', sa.Integer(), nullable=False),
        sa.Column('fee_version', sa.String(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('gateway_order_id', sa.String(), nullable=False),
        sa.Column('gateway_payment_id', sa.String(), nullable=True),
        sa.Column('idempotency_key', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('amount > 0', name=op.f('ck_escrow_orders_amount_positive')),
        sa.ForeignKeyConstraint(['application_id'], ['applications.id'], name=op.f('fk_escrow_orders_application_id_applications')),
        sa.ForeignKeyConstraint(['gig_id'], ['gigs.id'], name=op.f('fk_escrow_orders_gig_id_gigs')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_escrow_orders')),
        sa.UniqueConstraint('idempotency_key', name=op.f('uq_escrow_orders_idempotency_key'))
    )
    op.create_index('idx_escrow_status_expires', 'escrow_orders', ['status', 'expires_at'], unique=False)
    op.create_index(op.f('ix_escrow_orders_application_id'), 'escrow_orders', ['application_id'], unique=False)
    op.create_index(op.f('ix_escrow_orders_gateway_order_id'), 'escrow_orders', ['gateway_order_id'], unique=True)
    op.create_index(op.f('ix_escrow_orders_gig_id'), 'escrow_orders', ['gig_id'], unique=False)
    op.create_index(op.f('ix_escrow_orders_id'), 'escrow_orders', ['id'], unique=False)
    op.create_index(op.f('ix_escrow_orders_status'), 'escrow_orders', ['status'], unique=False)

    op.create_table('notification_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.String(length=36), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('application_id', sa.Integer(), nullable=False),
        sa.Column('gig_id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('freelancer_id', sa.Integer(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_notification_events')),
        sa.UniqueConstraint('event_id', name=op.f('uq_notification_events_event_id'))
    )
    op.create_index('idx_notification_status_id', 'notification_events', ['status', 'id'], unique=False)
    op.create_index(op.f('ix_notification_events_application_id'), 'notification_events', ['application_id'], unique=False)
    op.create_index(op.f('ix_notification_events_id'), 'notification_events', ['id'], unique=False)
    op.create_index(op.f('ix_notification_events_type'), 'notification_events', ['type'], unique=False)


def downgrade() -> None:
    op.drop_table('notification_events')
    op.drop_table('escrow_orders')
    op.drop_table('applications')
    op.drop_table('gigs')
    op.drop_table('subscriptions')
    op.drop_table('users')
