"""Initial DUXXAN schema

Revision ID: duxxan_initial_001
Revises:
Create Date: 2026-10-19 00:00:00

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = 'duxxan_initial_001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('wallet_address', sa.String(42), nullable=False),
        sa.Column('username', sa.String(50), nullable=False, unique=True),
        sa.Column('name', sa.String(100)),
        sa.Column('organization_type', sa.String(20), server_default='individual'),
        sa.Column('is_admin', sa.Boolean(), server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_users_wallet_address', 'users', ['wallet_address'], unique=True)

    op.create_table(
        'raffles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('creator_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('prize_value', sa.Numeric(15, 6), nullable=False),
        sa.Column('ticket_price', sa.Numeric(15, 6), nullable=False),
        sa.Column('max_tickets', sa.Integer(), nullable=False),
        sa.Column('tickets_sold', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by_admin', sa.Boolean(), server_default=sa.false()),
        sa.Column('transaction_hash', sa.String(66), unique=True),
        sa.Column('winner_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('is_approved_by_creator', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_approved_by_winner', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('winner_selected_at', sa.DateTime(timezone=True)),
        sa.Column('approval_deadline', sa.DateTime(timezone=True)),
        sa.Column('is_forfeited', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('settlement_version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('winning_ticket_id', sa.Integer()),
        sa.Column('winning_draw', sa.Integer()),
        sa.Column('total_units_at_draw', sa.Integer()),
        sa.Column('draw_seed', sa.String(64)),
        sa.Column('draw_commitment', sa.String(64)),
        sa.Column('settlement_failed_at', sa.DateTime(timezone=True)),
        sa.Column('settlement_error', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint('tickets_sold <= max_tickets', name='ck_raffles_tickets_sold'),
    )

    op.create_table(
        'tickets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('raffle_id', sa.Integer(), sa.ForeignKey('raffles.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('total_amount', sa.Numeric(15, 6), nullable=False),
        sa.Column('transaction_hash', sa.String(66), unique=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_tickets_raffle_id', 'tickets', ['raffle_id'])
    op.create_index('ix_tickets_user_id', 'tickets', ['user_id'])

    op.create_table(
        'donations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('creator_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('goal_amount', sa.Numeric(15, 6), nullable=False),
        sa.Column('current_amount', sa.Numeric(15, 6), nullable=False, server_default='0'),
        sa.Column('donor_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('end_date', sa.DateTime(timezone=True)),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_unlimited', sa.Boolean(), server_default=sa.false()),
        sa.Column('commission_rate', sa.Numeric(5, 2), nullable=False, server_default='10'),
        sa.Column('startup_fee', sa.Numeric(15, 6), nullable=False, server_default='0'),
        sa.Column('startup_fee_paid', sa.Boolean(), server_default=sa.false()),
        sa.Column('total_commission_collected', sa.Numeric(15, 6), nullable=False, server_default='0'),
        sa.Column('category', sa.String(50), server_default='general'),
        sa.Column('country', sa.String(3)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'donation_contributions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('donation_id', sa.Integer(), sa.ForeignKey('donations.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('amount', sa.Numeric(15, 6), nullable=False),
        sa.Column('commission_amount', sa.Numeric(15, 6), nullable=False, server_default='0'),
        sa.Column('net_amount', sa.Numeric(15, 6), nullable=False, server_default='0'),
        sa.Column('donor_country', sa.String(3)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_donation_contributions_donation_id', 'donation_contributions', ['donation_id'])

    op.create_table(
        'channels',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('creator_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('subscriber_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'channel_subscriptions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('channel_id', sa.Integer(), sa.ForeignKey('channels.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'channel_id', name='_user_channel_uc'),
    )
    op.create_index('ix_channel_subscriptions_channel_id', 'channel_subscriptions', ['channel_id'])

    op.create_table(
        'mail_messages',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('from_wallet_address', sa.String(42), nullable=False),
        sa.Column('to_wallet_address', sa.String(42), nullable=False),
        sa.Column('subject', sa.String(200), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('category', sa.String(20), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_starred', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('raffle_id', sa.Integer(), sa.ForeignKey('raffles.id')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_mail_messages_to_wallet_address', 'mail_messages', ['to_wallet_address'])

    op.create_table(
        'audit_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('entity_type', sa.String(30), nullable=False),
        sa.Column('entity_id', sa.Integer()),
        sa.Column('event', sa.String(50), nullable=False),
        sa.Column('payload', sa.JSON()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_audit_events_entity_id', 'audit_events', ['entity_id'])


def downgrade():
    op.drop_table('audit_events')
    op.drop_table('mail_messages')
    op.drop_table('channel_subscriptions')
    op.drop_table('channels')
    op.drop_table('donation_contributions')
    op.drop_table('donations')
    op.drop_table('tickets')
    op.drop_table('raffles')
    op.drop_table('users')
