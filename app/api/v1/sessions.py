"""
Therapy session API endpoints
"""
from datetime import datetime
from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_current_user, get_clock
from app.application.series import SeriesMutator, MoveOccurrence, MoveSeries, SeriesMoveResult
from app.application.sessions import CreateSessionUseCase, list_sessions_in_range
from app.domain.errors import NotFoundError, RecurrenceValidationError
from app.domain.recurrence import Clock
from app.infrastructure.db.models import User, TherapySessionModel
from app.infrastructure.sessions.repository import SessionRepository
from app.utils.clock import as_utc


router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])


# === Request/Response models ===

class CreateSessionRequest(BaseModel):
    patient_id: int
    scheduled_at: datetime
    modality: str = "individual"
    duration_minutes: int | None = None
    value: Decimal | None = None
    notes: str | None = None

    @field_validator("scheduled_at")
    @classmethod
    def require_offset(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            raise ValueError("datetime must carry a UTC offset")
        return v


class MoveSessionRequest(BaseModel):
    target: datetime
    scope: Literal["single", "series"] = "single"

    @field_validator("target")
    @classmethod
    def require_offset(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            raise ValueError("datetime must carry a UTC offset")
        return v


class SessionResponse(BaseModel):
    session_id: int
    patient_id: int
    schedule_id: int | None
    scheduled_at: datetime
    duration_minutes: int
    modality: str | None
    status: str
    paid: bool
    value: str | None  # Decimal as string
    notes: str | None
    origin: str


class MoveSessionResponse(BaseModel):
    scope: str
    session: SessionResponse | None = None
    detached: bool = False
    schedule_id: int | None = None
    rrule: dict | None = None
    deleted: int = 0
    inserted: int = 0
    notices: list[dict] = Field(default_factory=list)


def _to_response(s: TherapySessionModel) -> SessionResponse:
    return SessionResponse(
        session_id=s.id,
        patient_id=s.patient_id,
        schedule_id=s.schedule_id,
        scheduled_at=as_utc(s.scheduled_at),
        duration_minutes=s.duration_minutes,
        modality=s.modality,
        status=s.status,
        paid=s.paid,
        value=None if s.value is None else str(s.value),
        notes=s.notes,
        origin=s.origin,
    )


# === Endpoints ===

@router.post("", response_model=SessionResponse, status_code=201)
def create_session(
    req: CreateSessionRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Book a standalone (manual) session"""
    session = CreateSessionUseCase(db).execute(
        user_id=user.id,
        patient_id=req.patient_id,
        scheduled_at=req.scheduled_at,
        modality=req.modality,
        duration_minutes=req.duration_minutes,
        value=req.value,
        notes=req.notes,
    )
    return _to_response(session)


@router.get("", response_model=list[SessionResponse])
def get_sessions(
    start: datetime,
    end: datetime,
    patient_id: int | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Sessions with start <= scheduled_at <= end"""
    return [_to_response(s) for s in list_sessions_in_range(db, user.id, start, end, patient_id)]


@router.post("/{session_id}/move", response_model=MoveSessionResponse)
def move_session(
    session_id: int,
    req: MoveSessionRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """
    Drop a session on a new slot.

    scope=single moves only this session (detaching it from its series);
    scope=series re-anchors the whole series on the target from this
    occurrence onward.
    """
    mutator = SeriesMutator(db, clock=clock)

    if req.scope == "series":
        session = SessionRepository(db).get(session_id, user.id)
        if session is None:
            raise NotFoundError(f"Sessão #{session_id} não encontrada")
        if session.schedule_id is None:
            raise RecurrenceValidationError(f"Sessão #{session_id} não pertence a uma série")
        command = MoveSeries(
            schedule_id=session.schedule_id,
            original_occurrence=as_utc(session.scheduled_at),
            target=req.target,
        )
    else:
        command = MoveOccurrence(session_id=session_id, target=req.target)

    result = mutator.handle(user.id, command)

    if isinstance(result, SeriesMoveResult):
        return MoveSessionResponse(
            scope="series",
            schedule_id=result.schedule_id,
            rrule=result.rrule_json,
            deleted=result.deleted,
            inserted=result.inserted,
            notices=[n.as_dict() for n in result.notices],
        )
    return MoveSessionResponse(
        scope="single",
        session=_to_response(result.session),
        detached=result.detached,
        notices=[n.as_dict() for n in result.notices],
    )
