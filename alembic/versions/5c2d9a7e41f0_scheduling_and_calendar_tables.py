"""scheduling and calendar tables

Revision ID: 5c2d9a7e41f0
Revises:
Create Date: 2025-11-18 09:12:44.502113

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '5c2d9a7e41f0'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = sa.Enum('ADMIN', 'CLIENT', name='userrole')
appointment_status = sa.Enum('SCHEDULED', 'CONFIRMED', 'CANCELLED', 'COMPLETED', name='appointmentstatus')
calendar_provider = sa.Enum('GOOGLE', 'OUTLOOK', name='calendarprovider')


def upgrade() -> None:
    """Upgrade schema."""

    # 1. Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('role', user_role, nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True)
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])

    # 2. Create appointments table
    op.create_table(
        'appointments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('booking_reference', sa.String(32), nullable=False),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('vapi_call_id', sa.String, nullable=True),
        sa.Column('customer_name', sa.String, nullable=False),
        sa.Column('customer_phone', sa.String, nullable=False),
        sa.Column('customer_email', sa.String, nullable=True),
        sa.Column('title', sa.String, nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('timezone', sa.String, nullable=False, server_default='UTC'),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('status', appointment_status, nullable=False),
        sa.Column('cancellation_reason', sa.Text, nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('provider', calendar_provider, nullable=True),
        sa.Column('external_event_id', sa.String, nullable=True),
        sa.Column('calendar_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True)
    )

    # Indexes for appointments
    op.create_index('ix_appointments_booking_reference', 'appointments', ['booking_reference'], unique=True)
    op.create_index('ix_appointments_user_id', 'appointments', ['user_id'])
    op.create_index('ix_appointments_start_time', 'appointments', ['start_time'])
    op.create_index('ix_appointments_user_status_start', 'appointments', ['user_id', 'status', 'start_time'])
    op.create_index('ix_appointments_user_provider_event', 'appointments', ['user_id', 'provider', 'external_event_id'])

    # 3. Create calendar_connections table
    op.create_table(
        'calendar_connections',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('provider', calendar_provider, nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('access_token', sa.Text, nullable=False),
        sa.Column('refresh_token', sa.Text, nullable=False),
        sa.Column('token_expiry', sa.DateTime(timezone=True), nullable=False),
        sa.Column('calendar_id', sa.String, nullable=False, server_default='primary'),
        sa.Column('calendar_name', sa.String, nullable=True),
        sa.Column('email', sa.String, nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('user_id', 'provider', name='uq_calendar_connections_user_provider')
    )
    op.create_index('ix_calendar_connections_user_id', 'calendar_connections', ['user_id'])

    # 4. Create calendar_oauth_configs table
    op.create_table(
        'calendar_oauth_configs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('provider', calendar_provider, nullable=False, unique=True),
        sa.Column('client_id', sa.String, nullable=False),
        sa.Column('client_secret', sa.Text, nullable=False),
        sa.Column('redirect_uri', sa.String, nullable=False),
        sa.Column('scopes', sa.Text, nullable=False),
        sa.Column('is_enabled', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True)
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('calendar_oauth_configs')

    op.drop_index('ix_calendar_connections_user_id', table_name='calendar_connections')
    op.drop_table('calendar_connections')

    op.drop_index('ix_appointments_user_provider_event', table_name='appointments')
    op.drop_index('ix_appointments_user_status_start', table_name='appointments')
    op.drop_index('ix_appointments_start_time', table_name='appointments')
    op.drop_index('ix_appointments_user_id', table_name='appointments')
    op.drop_index('ix_appointments_booking_reference', table_name='appointments')
    op.drop_table('appointments')

    op.drop_index('ix_users_role', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')

    calendar_provider.drop(op.get_bind(), checkfirst=True)
    appointment_status.drop(op.get_bind(), checkfirst=True)
    user_role.drop(op.get_bind(), checkfirst=True)
