"""
Recurring schedule API endpoints
"""
from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_current_user, get_clock
from app.application.materialization import MaterializationEngine
from app.application.schedules import (
    CreateScheduleUseCase, UpdateScheduleUseCase, DeactivateScheduleUseCase, list_schedules,
)
from app.application.series import get_owned_patient, get_owned_schedule, ensure_patient_not_archived
from app.domain.errors import RecurrenceValidationError
from app.domain.recurrence import Clock, parse_rule, count_occurrences_in_month, add_months
from app.infrastructure.db.models import User, RecurringScheduleModel
from app.utils.clock import practice_timezone


router = APIRouter(prefix="/api/v1/schedules", tags=["schedules"])


# === Request/Response models ===

class CreateScheduleRequest(BaseModel):
    patient_id: int
    rrule: dict[str, Any]  # {frequency, interval, daysOfWeek, startDate, startTime}
    duration_minutes: int | None = None
    session_type: str = "individual"
    session_value: Decimal | None = None


class UpdateScheduleRequest(BaseModel):
    rrule: dict[str, Any] | None = None
    duration_minutes: int | None = None
    session_type: str | None = None
    session_value: Decimal | None = None

    @field_validator("duration_minutes", "session_type")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("must not be null")
        return v


class ScheduleResponse(BaseModel):
    schedule_id: int
    patient_id: int
    rrule: dict[str, Any]
    duration_minutes: int
    session_type: str
    session_value: str | None  # Decimal as string
    is_active: bool
    sessions_next_month: int
    inserted: int = 0
    deleted: int = 0
    notices: list[dict] = Field(default_factory=list)


# === Helpers ===

def _next_month_count(rrule_json: dict, now: datetime) -> int:
    month_start = add_months(now.astimezone(practice_timezone()).date().replace(day=1), 1)
    try:
        return count_occurrences_in_month(parse_rule(rrule_json), month_start)
    except RecurrenceValidationError:
        return 0


def _to_response(schedule: RecurringScheduleModel, clock: Clock, **extra) -> ScheduleResponse:
    notices = [n.as_dict() for n in extra.pop("notices", [])]
    return ScheduleResponse(
        schedule_id=schedule.id,
        patient_id=schedule.patient_id,
        rrule=schedule.rrule_json,
        duration_minutes=schedule.duration_minutes,
        session_type=schedule.session_type,
        session_value=None if schedule.session_value is None else str(schedule.session_value),
        is_active=schedule.is_active,
        sessions_next_month=_next_month_count(schedule.rrule_json, clock()),
        notices=notices,
        **extra,
    )


# === Endpoints ===

@router.post("", response_model=ScheduleResponse, status_code=201)
def create_schedule(
    req: CreateScheduleRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """Create a recurring schedule and materialize its sessions"""
    result = CreateScheduleUseCase(db, clock=clock).execute(
        user_id=user.id,
        patient_id=req.patient_id,
        rrule_json=req.rrule,
        duration_minutes=req.duration_minutes,
        session_type=req.session_type,
        session_value=req.session_value,
        actor_user_id=user.id,
    )
    return _to_response(result.schedule, clock, inserted=result.inserted, notices=result.notices)


@router.get("", response_model=list[ScheduleResponse])
def get_schedules(
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """List the user's schedules (active only by default)"""
    return [_to_response(s, clock) for s in list_schedules(db, user.id, include_inactive)]


@router.patch("/{schedule_id}", response_model=ScheduleResponse)
def update_schedule(
    schedule_id: int,
    req: UpdateScheduleRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """Edit a schedule; future recurring sessions are rebuilt"""
    changes = req.model_dump(exclude_unset=True)
    if "rrule" in changes:
        changes["rrule_json"] = changes.pop("rrule")
    result = UpdateScheduleUseCase(db, clock=clock).execute(
        user_id=user.id, schedule_id=schedule_id, actor_user_id=user.id, **changes,
    )
    return _to_response(
        result.schedule, clock,
        inserted=result.inserted, deleted=result.deleted, notices=result.notices,
    )


@router.post("/{schedule_id}/deactivate", response_model=ScheduleResponse)
def deactivate_schedule(
    schedule_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """Retire a schedule and drop its future recurring sessions"""
    result = DeactivateScheduleUseCase(db, clock=clock).execute(user.id, schedule_id, actor_user_id=user.id)
    return _to_response(result.schedule, clock, deleted=result.deleted)


@router.post("/{schedule_id}/materialize", response_model=ScheduleResponse)
def materialize_schedule(
    schedule_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """Top up missing sessions up to the horizon (idempotent)"""
    schedule = get_owned_schedule(db, user.id, schedule_id)
    if not schedule.is_active:
        raise RecurrenceValidationError(f"Agenda #{schedule_id} está inativa")
    ensure_patient_not_archived(get_owned_patient(db, user.id, schedule.patient_id))

    inserted = MaterializationEngine(db, clock=clock).materialize(schedule)
    return _to_response(schedule, clock, inserted=inserted)
