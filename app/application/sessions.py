"""Standalone session use cases - manual booking, plain reschedule, range queries"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.domain.errors import NotFoundError, RecurrenceValidationError, SessionConflictError
from app.domain.schedule import SESSION_TYPES
from app.infrastructure.db.models import (
    Patient, TherapySessionModel, ORIGIN_MANUAL, STATUS_SCHEDULED,
)
from app.infrastructure.sessions.repository import SessionRepository, is_unique_violation
from app.utils.clock import as_utc


class CreateSessionUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        user_id: int,
        patient_id: int,
        scheduled_at: datetime,
        modality: str,
        duration_minutes: int | None = None,
        value: Decimal | None = None,
        notes: str | None = None,
    ) -> TherapySessionModel:
        patient = self.db.query(Patient).filter(
            Patient.id == patient_id,
            Patient.user_id == user_id,
        ).first()
        if not patient:
            raise NotFoundError(f"Paciente #{patient_id} não encontrado")
        if patient.is_archived:
            raise RecurrenceValidationError(f"Paciente #{patient_id} está arquivado")
        if modality not in SESSION_TYPES:
            raise RecurrenceValidationError(f"Modalidade inválida: {modality}")
        if duration_minutes is None:
            duration_minutes = get_settings().DEFAULT_SESSION_DURATION
        if duration_minutes < 1:
            raise RecurrenceValidationError("Duração deve ser >= 1 minuto")

        session = TherapySessionModel(
            user_id=user_id,
            patient_id=patient_id,
            schedule_id=None,
            scheduled_at=as_utc(scheduled_at),
            duration_minutes=duration_minutes,
            type="therapy",
            modality=modality,
            value=value,
            notes=notes,
            status=STATUS_SCHEDULED,
            paid=False,
            origin=ORIGIN_MANUAL,
        )
        self.db.add(session)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if is_unique_violation(e):
                raise SessionConflictError("Já existe uma sessão do paciente neste horário") from e
            raise
        return session


class MoveSessionUseCase:
    """Reschedule a session without touching series bookkeeping."""

    def __init__(self, db: Session):
        self.db = db
        self.sessions = SessionRepository(db)

    def execute(self, user_id: int, session_id: int, target: datetime) -> TherapySessionModel:
        try:
            session = self.sessions.update_by_id(session_id, user_id, scheduled_at=target)
        except IntegrityError as e:
            self.db.rollback()
            if is_unique_violation(e):
                raise SessionConflictError("Já existe uma sessão do paciente neste horário") from e
            raise
        if session is None:
            raise NotFoundError(f"Sessão #{session_id} não encontrada")
        self.db.commit()
        return session


def list_sessions_in_range(
    db: Session,
    user_id: int,
    start: datetime,
    end: datetime,
    patient_id: int | None = None,
) -> list[TherapySessionModel]:
    """Sessions with start <= scheduled_at <= end, ascending."""
    if as_utc(start) > as_utc(end):
        raise RecurrenceValidationError("start must be <= end")
    return SessionRepository(db).select_by_filter(
        user_id, patient_id=patient_id, from_dt=start, to_dt=end,
    )
