"""booking lifecycle schema

Revision ID: 0001_booking_lifecycle
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = '0001_booking_lifecycle'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_SLOT = sa.text("booking_status IN ('pending', 'confirmed')")
OPEN_REQUEST = sa.text("status = 'pending'")


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'provider_profiles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('business_name', sa.String(), nullable=True),
        sa.Column('region_code', sa.String(8), nullable=False, server_default='NA'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('instant_booking_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('advance_booking_days', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('min_advance_hours', sa.Integer(), nullable=False, server_default='24'),
        sa.Column('booking_buffer_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed_bookings_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('no_show_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('calendar_version', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
    )
    op.create_index('ix_provider_profiles_user_id', 'provider_profiles', ['user_id'], unique=True)

    op.create_table(
        'provider_policies',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider_id', sa.Integer(), sa.ForeignKey('provider_profiles.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('cancellation_window_hours', sa.Integer(), nullable=False, server_default='24'),
        sa.Column('cancellation_fee_percentage', sa.Numeric(5, 2), nullable=False, server_default='50'),
        sa.Column('reschedule_allowed', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('reschedule_window_hours', sa.Integer(), nullable=False, server_default='24'),
        sa.Column('max_reschedules', sa.Integer(), nullable=False, server_default='2'),
        *_timestamps(),
    )

    op.create_table(
        'provider_availability',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider_id', sa.Integer(), sa.ForeignKey('provider_profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('is_available', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_provider_availability_provider_day', 'provider_availability', ['provider_id', 'day_of_week'])

    op.create_table(
        'provider_time_off',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider_id', sa.Integer(), sa.ForeignKey('provider_profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('all_day', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('start_time', sa.Time(), nullable=True),
        sa.Column('end_time', sa.Time(), nullable=True),
        sa.Column('reason', sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_provider_time_off_provider_dates', 'provider_time_off', ['provider_id', 'start_date', 'end_date'])

    op.create_table(
        'services',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider_id', sa.Integer(), sa.ForeignKey('provider_profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price_min', sa.Numeric(10, 2), nullable=False),
        sa.Column('price_max', sa.Numeric(10, 2), nullable=True),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('buffer_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('deposit_required', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('deposit_type', sa.String(16), nullable=False, server_default='percentage'),
        sa.Column('deposit_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_services_provider_id', 'services', ['provider_id'])
    op.create_index('ix_services_title', 'services', ['title'])

    op.create_table(
        'bookings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('provider_id', sa.Integer(), sa.ForeignKey('provider_profiles.id'), nullable=False),
        sa.Column('service_id', sa.Integer(), sa.ForeignKey('services.id'), nullable=False),
        sa.Column('assigned_team_member_id', sa.Integer(), nullable=True),
        sa.Column('rescheduled_from_booking_id', sa.Integer(), sa.ForeignKey('bookings.id'), nullable=True),
        sa.Column('appointment_date', sa.Date(), nullable=False),
        sa.Column('appointment_time', sa.Time(), nullable=False),
        sa.Column('appointment_end_time', sa.Time(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('buffer_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('service_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('deposit_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('service_fee', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('tip_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('amount_paid', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('refunded_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('refund_shortfall', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('booking_status', sa.String(32), nullable=False, server_default='pending'),
        sa.Column('payment_status', sa.String(32), nullable=False, server_default='awaiting_deposit'),
        sa.Column('payment_reference', sa.String(), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('balance_paid_at', sa.DateTime(), nullable=True),
        sa.Column('special_requests', sa.Text(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancellation_reason', sa.String(), nullable=True),
        sa.Column('cancellation_fee', sa.Numeric(10, 2), nullable=True),
        sa.Column('reschedule_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('review_deadline', sa.DateTime(), nullable=True),
        sa.Column('payment_reminder_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('payment_reminder_sent_at', sa.DateTime(), nullable=True),
        sa.Column('reminder_24h_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('provider_reminder_24h_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('review_reminder_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
    )
    op.create_index('ix_bookings_client_id', 'bookings', ['client_id'])
    op.create_index('ix_bookings_provider_id', 'bookings', ['provider_id'])
    op.create_index('ix_bookings_appointment_date', 'bookings', ['appointment_date'])
    op.create_index('ix_bookings_booking_status', 'bookings', ['booking_status'])
    op.create_index('ix_bookings_payment_status', 'bookings', ['payment_status'])
    op.create_index('ix_bookings_provider_date', 'bookings', ['provider_id', 'appointment_date'])
    op.create_index(
        'uq_bookings_active_slot',
        'bookings',
        ['provider_id', 'appointment_date', 'appointment_time'],
        unique=True,
        sqlite_where=ACTIVE_SLOT,
        postgresql_where=ACTIVE_SLOT,
    )

    op.create_table(
        'reschedule_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('booking_id', sa.Integer(), sa.ForeignKey('bookings.id'), nullable=False),
        sa.Column('requested_by_id', sa.Integer(), nullable=False),
        sa.Column('requested_by_role', sa.String(16), nullable=False),
        sa.Column('new_date', sa.Date(), nullable=False),
        sa.Column('new_time', sa.Time(), nullable=False),
        sa.Column('reason', sa.String(), nullable=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('responded_at', sa.DateTime(), nullable=True),
        sa.Column('new_booking_id', sa.Integer(), sa.ForeignKey('bookings.id'), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_reschedule_requests_booking_id', 'reschedule_requests', ['booking_id'])
    op.create_index('ix_reschedule_requests_status', 'reschedule_requests', ['status'])
    op.create_index(
        'uq_reschedule_requests_open',
        'reschedule_requests',
        ['booking_id'],
        unique=True,
        sqlite_where=OPEN_REQUEST,
        postgresql_where=OPEN_REQUEST,
    )

    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('booking_id', sa.Integer(), sa.ForeignKey('bookings.id'), nullable=False),
        sa.Column('reference', sa.String(), nullable=False),
        sa.Column('provider', sa.String(), nullable=False),
        sa.Column('kind', sa.String(16), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='initialized'),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('amount_captured', sa.Numeric(10, 2), nullable=True),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('authorization_url', sa.String(), nullable=True),
        sa.Column('client_secret', sa.String(), nullable=True),
        sa.Column('failure_reason', sa.String(), nullable=True),
        sa.Column('parent_reference', sa.String(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_payment_transactions_booking_id', 'payment_transactions', ['booking_id'])
    op.create_index('ix_payment_transactions_reference', 'payment_transactions', ['reference'], unique=True)

    op.create_table(
        'reviews',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('booking_id', sa.Integer(), sa.ForeignKey('bookings.id'), nullable=False, unique=True),
        sa.Column('provider_id', sa.Integer(), sa.ForeignKey('provider_profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('rating', sa.Integer(), nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('message', sa.String(), nullable=False),
        sa.Column('link', sa.String(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('reviews')
    op.drop_table('payment_transactions')
    op.drop_index('uq_reschedule_requests_open', table_name='reschedule_requests')
    op.drop_table('reschedule_requests')
    op.drop_index('uq_bookings_active_slot', table_name='bookings')
    op.drop_table('bookings')
    op.drop_table('services')
    op.drop_table('provider_time_off')
    op.drop_table('provider_availability')
    op.drop_table('provider_policies')
    op.drop_table('provider_profiles')
