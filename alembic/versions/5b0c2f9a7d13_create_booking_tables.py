"""create_booking_tables

Revision ID: 5b0c2f9a7d13
Revises:
Create Date: 2025-11-03 10:12:41.508213

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '5b0c2f9a7d13'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum types are created once up front; tables reference them without re-creating
user_role = postgresql.ENUM('SUPER_ADMIN', 'COUNSELOR', name='user_role', create_type=False)
gender = postgresql.ENUM('MALE', 'FEMALE', 'OTHER', name='gender', create_type=False)
session_type = postgresql.ENUM('ONLINE', 'IN_PERSON', name='session_type', create_type=False)
slot_status = postgresql.ENUM('AVAILABLE', 'PROCESSING', 'BOOKED', name='slot_status', create_type=False)
appointment_status = postgresql.ENUM(
    'PENDING', 'CONFIRMED', 'CANCELLED', 'COMPLETED', 'DELETED',
    name='appointment_status', create_type=False,
)

ENUMS = (user_role, gender, session_type, slot_status, appointment_status)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table('users',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', user_role, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    op.create_table('counselor_settings',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('counselor_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('minimum_slots_per_day', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['counselor_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('counselor_id')
    )

    op.create_table('clients',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=30), nullable=False),
        sa.Column('date_of_birth', sa.Date(), nullable=True),
        sa.Column('gender', gender, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_clients_email'), 'clients', ['email'], unique=True)

    op.create_table('counselor_clients',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('counselor_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('client_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['counselor_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('counselor_id', 'client_id', name='uq_counselor_client')
    )
    op.create_index(op.f('ix_counselor_clients_client_id'), 'counselor_clients', ['client_id'], unique=False)
    op.create_index(op.f('ix_counselor_clients_counselor_id'), 'counselor_clients', ['counselor_id'], unique=False)

    op.create_table('calendars',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('counselor_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['counselor_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('counselor_id', 'date', name='uq_calendar_counselor_date')
    )
    op.create_index(op.f('ix_calendars_counselor_id'), 'calendars', ['counselor_id'], unique=False)

    op.create_table('time_slots',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('calendar_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('start_minute', sa.Integer(), nullable=False),
        sa.Column('end_minute', sa.Integer(), nullable=False),
        sa.Column('type', session_type, nullable=False),
        sa.Column('status', slot_status, nullable=False),
        sa.Column('is_rescheduled', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('start_minute >= 0 AND start_minute < 1440', name='ck_time_slot_start_range'),
        sa.CheckConstraint('end_minute > start_minute', name='ck_time_slot_end_after_start'),
        sa.ForeignKeyConstraint(['calendar_id'], ['calendars.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_time_slots_calendar_id'), 'time_slots', ['calendar_id'], unique=False)
    op.create_index(op.f('ix_time_slots_status'), 'time_slots', ['status'], unique=False)

    op.create_table('appointments',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('client_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('counselor_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('time_slot_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('session_type', session_type, nullable=False),
        sa.Column('status', appointment_status, nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('event_id', sa.String(length=255), nullable=True),
        sa.Column('payment_token', sa.String(length=128), nullable=True),
        sa.Column('payment_token_expiry', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_rescheduled', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ),
        sa.ForeignKeyConstraint(['counselor_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['time_slot_id'], ['time_slots.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_token')
    )
    op.create_index(op.f('ix_appointments_client_id'), 'appointments', ['client_id'], unique=False)
    op.create_index(op.f('ix_appointments_counselor_id'), 'appointments', ['counselor_id'], unique=False)
    op.create_index(op.f('ix_appointments_time_slot_id'), 'appointments', ['time_slot_id'], unique=False)
    op.create_index(op.f('ix_appointments_status'), 'appointments', ['status'], unique=False)
    op.create_index(op.f('ix_appointments_created_at'), 'appointments', ['created_at'], unique=False)

    op.create_table('meetings',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('appointment_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('platform', sa.String(length=50), nullable=False),
        sa.Column('link', sa.String(length=1000), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('appointment_id')
    )

    op.create_table('calendar_integrations',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('counselor_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('access_token_encrypted', sa.LargeBinary(), nullable=True),
        sa.Column('refresh_token_encrypted', sa.LargeBinary(), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('calendar_id', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['counselor_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_calendar_integrations_counselor_id'), 'calendar_integrations', ['counselor_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_calendar_integrations_counselor_id'), table_name='calendar_integrations')
    op.drop_table('calendar_integrations')
    op.drop_table('meetings')
    op.drop_index(op.f('ix_appointments_created_at'), table_name='appointments')
    op.drop_index(op.f('ix_appointments_status'), table_name='appointments')
    op.drop_index(op.f('ix_appointments_time_slot_id'), table_name='appointments')
    op.drop_index(op.f('ix_appointments_counselor_id'), table_name='appointments')
    op.drop_index(op.f('ix_appointments_client_id'), table_name='appointments')
    op.drop_table('appointments')
    op.drop_index(op.f('ix_time_slots_status'), table_name='time_slots')
    op.drop_index(op.f('ix_time_slots_calendar_id'), table_name='time_slots')
    op.drop_table('time_slots')
    op.drop_index(op.f('ix_calendars_counselor_id'), table_name='calendars')
    op.drop_table('calendars')
    op.drop_index(op.f('ix_counselor_clients_counselor_id'), table_name='counselor_clients')
    op.drop_index(op.f('ix_counselor_clients_client_id'), table_name='counselor_clients')
    op.drop_table('counselor_clients')
    op.drop_index(op.f('ix_clients_email'), table_name='clients')
    op.drop_table('clients')
    op.drop_table('counselor_settings')
    op.drop_index(op.f('ix_users_email'), table_name='users')
    op.drop_table('users')

    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
