"""create scheduling tables

Revision ID: a1f3c9e2d7b4
Revises:
Create Date: 2026-10-19 10:12:41.208317

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'a1f3c9e2d7b4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # 1. users
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )

    # 2. event_log
    op.create_table(
        'event_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=128), nullable=False),
        sa.Column('payload_json', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('occurred_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_event_log_user_id', 'event_log', ['user_id'])
    op.create_index('ix_event_log_event_type', 'event_log', ['event_type'])
    op.create_index('ix_event_log_occurred_at', 'event_log', ['occurred_at'])

    # 3. patients
    op.create_table(
        'patients',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_archived', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_patients_user_id', 'patients', ['user_id'])

    # 4. recurring_schedules
    op.create_table(
        'recurring_schedules',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('patient_id', sa.Integer(), nullable=False),
        sa.Column('rrule_json', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), server_default='50', nullable=False),
        sa.Column('session_type', sa.String(length=32), server_default='individual', nullable=False),
        sa.Column('session_value', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_recurring_schedules_user_id', 'recurring_schedules', ['user_id'])
    op.create_index('ix_recurring_schedules_patient_id', 'recurring_schedules', ['patient_id'])
    op.create_index('ix_recurring_schedules_patient_active', 'recurring_schedules', ['patient_id', 'is_active'])

    # 5. sessions
    op.create_table(
        'sessions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('patient_id', sa.Integer(), nullable=False),
        sa.Column('schedule_id', sa.Integer(), nullable=True),
        sa.Column('scheduled_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), server_default='50', nullable=False),
        sa.Column('type', sa.String(length=32), server_default='therapy', nullable=False),
        sa.Column('modality', sa.String(length=32), nullable=True),
        sa.Column('status', sa.String(length=16), server_default='scheduled', nullable=False),
        sa.Column('paid', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('value', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('origin', sa.String(length=16), server_default='manual', nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('patient_id', 'scheduled_at', name='uq_session_patient_instant')
    )
    op.create_index('ix_sessions_user_id', 'sessions', ['user_id'])
    op.create_index('ix_sessions_patient_id', 'sessions', ['patient_id'])
    op.create_index('ix_sessions_schedule_id', 'sessions', ['schedule_id'])
    op.create_index('ix_sessions_user_scheduled_at', 'sessions', ['user_id', 'scheduled_at'])
    op.create_index('ix_sessions_schedule_origin', 'sessions', ['schedule_id', 'origin', 'scheduled_at'])

    # 6. recurring_exceptions
    op.create_table(
        'recurring_exceptions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('schedule_id', sa.Integer(), nullable=False),
        sa.Column('exception_date', sa.Date(), nullable=False),
        sa.Column('exception_type', sa.String(length=16), nullable=False),
        sa.Column('new_datetime', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_recurring_exceptions_user_id', 'recurring_exceptions', ['user_id'])
    op.create_index('ix_recurring_exceptions_schedule_id', 'recurring_exceptions', ['schedule_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('recurring_exceptions')
    op.drop_table('sessions')
    op.drop_table('recurring_schedules')
    op.drop_table('patients')
    op.drop_table('event_log')
    op.drop_table('users')
