"""
SQLAlchemy ORM models
"""
from decimal import Decimal
from datetime import date as date_type, datetime
from sqlalchemy import (
    String, DateTime, Integer, Text, TIMESTAMP, Date, func, Boolean, Numeric,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import JSONB

from app.infrastructure.db.session import Base


ORIGIN_RECURRING = "recurring"
ORIGIN_MANUAL = "manual"

STATUS_SCHEDULED = "scheduled"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

EXCEPTION_MOVE = "move"


class User(Base):
    """Practice owner (therapist). Every row below is scoped to one user."""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )


class EventLog(Base):
    """
    Append-only audit log of schedule mutations
    """
    __tablename__ = "event_log"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    actor_user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    event_type: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    payload_json: Mapped[dict] = mapped_column(JSONB, nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        index=True
    )
    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False
    )


class Patient(Base):
    """Patient record. Owned by patient management; the core only reads it."""
    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )


class RecurringScheduleModel(Base):
    """Recurring series definition; sessions reference it via schedule_id"""
    __tablename__ = "recurring_schedules"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    patient_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)  # -> patients

    rrule_json: Mapped[dict] = mapped_column(JSONB, nullable=False)  # see app.domain.recurrence.rule_to_json
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, server_default="50")
    session_type: Mapped[str] = mapped_column(String(32), nullable=False, server_default="individual")
    session_value: Mapped[Decimal | None] = mapped_column(Numeric(precision=12, scale=2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index('ix_recurring_schedules_patient_active', 'patient_id', 'is_active'),
    )


class TherapySessionModel(Base):
    """One concrete session. origin='recurring' rows belong to bulk regeneration."""
    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    patient_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)  # -> patients
    schedule_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)  # null = standalone

    scheduled_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, server_default="50")
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="therapy", server_default="therapy")
    modality: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_SCHEDULED, server_default=STATUS_SCHEDULED)
    paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    value: Mapped[Decimal | None] = mapped_column(Numeric(precision=12, scale=2), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    origin: Mapped[str] = mapped_column(String(16), nullable=False, default=ORIGIN_MANUAL, server_default=ORIGIN_MANUAL)  # 'manual' | 'recurring'

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint('patient_id', 'scheduled_at', name='uq_session_patient_instant'),
        Index('ix_sessions_user_scheduled_at', 'user_id', 'scheduled_at'),
        Index('ix_sessions_schedule_origin', 'schedule_id', 'origin', 'scheduled_at'),
        {"sqlite_autoincrement": True},  # no rowid reuse after bulk deletes
    )


class RecurringExceptionModel(Base):
    """Audit row for a single occurrence moved off its series slot"""
    __tablename__ = "recurring_exceptions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    schedule_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)  # -> recurring_schedules

    exception_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    exception_type: Mapped[str] = mapped_column(String(16), nullable=False)  # 'move'
    new_datetime: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
