"""Recurring schedule use cases - create, edit, retire"""
import logging
from dataclasses import dataclass, field
from datetime import tzinfo
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from app.application.materialization import MaterializationEngine
from app.application.notices import Notice, build_notice
from app.application.series import (
    SeriesMutator, get_owned_patient, get_owned_schedule, ensure_patient_not_archived,
)
from app.config import get_settings
from app.domain.errors import RecurrenceValidationError
from app.domain.recurrence import Clock, parse_rule, rule_to_json
from app.domain.schedule import ScheduleEvents, SESSION_TYPES
from app.infrastructure.db.models import RecurringScheduleModel, ORIGIN_RECURRING
from app.infrastructure.eventlog.repository import EventLogRepository
from app.infrastructure.sessions.repository import SessionRepository
from app.utils.clock import system_clock, practice_timezone

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("rrule_json", "duration_minutes", "session_type", "session_value")


def validate_schedule_fields(
    duration_minutes: int | None = None,
    session_type: str | None = None,
    session_value: Decimal | None = None,
) -> None:
    if duration_minutes is not None and duration_minutes < 1:
        raise RecurrenceValidationError("Duração deve ser >= 1 minuto")
    if session_type is not None and session_type not in SESSION_TYPES:
        raise RecurrenceValidationError(f"Tipo de sessão inválido: {session_type}")
    if session_value is not None and session_value < 0:
        raise RecurrenceValidationError("Valor da sessão não pode ser negativo")


@dataclass
class ScheduleResult:
    schedule: RecurringScheduleModel
    deleted: int = 0
    inserted: int = 0
    notices: list[Notice] = field(default_factory=list)


class CreateScheduleUseCase:
    def __init__(
        self,
        db: Session,
        clock: Clock = system_clock,
        tz: tzinfo | None = None,
        months_ahead: int | None = None,
    ):
        self.db = db
        self.event_repo = EventLogRepository(db)
        self.engine = MaterializationEngine(db, clock=clock, months_ahead=months_ahead, tz=tz or practice_timezone())

    def execute(
        self,
        user_id: int,
        patient_id: int,
        rrule_json: dict[str, Any],
        duration_minutes: int | None = None,
        session_type: str = "individual",
        session_value: Decimal | None = None,
        actor_user_id: int | None = None,
    ) -> ScheduleResult:
        rule = parse_rule(rrule_json)
        if duration_minutes is None:
            duration_minutes = get_settings().DEFAULT_SESSION_DURATION
        validate_schedule_fields(duration_minutes, session_type, session_value)

        patient = get_owned_patient(self.db, user_id, patient_id)
        ensure_patient_not_archived(patient)

        active = self.db.query(RecurringScheduleModel).filter(
            RecurringScheduleModel.patient_id == patient_id,
            RecurringScheduleModel.is_active == True,
        ).first()
        if active:
            raise RecurrenceValidationError(
                f"Paciente #{patient_id} já tem a agenda ativa #{active.id}"
            )

        schedule = RecurringScheduleModel(
            user_id=user_id,
            patient_id=patient_id,
            rrule_json=rule_to_json(rule),
            duration_minutes=duration_minutes,
            session_type=session_type,
            session_value=session_value,
            is_active=True,
        )
        self.db.add(schedule)
        self.db.commit()

        inserted = self.engine.materialize(schedule)

        notices: list[Notice] = []
        if inserted == 0:
            notices.append(build_notice("NO_OCCURRENCES_GENERATED", schedule_id=schedule.id))

        self.event_repo.append_event(
            user_id=user_id,
            event_type="schedule_created",
            payload=ScheduleEvents.created(
                schedule.id, patient_id, schedule.rrule_json,
                duration_minutes, session_type, session_value, inserted,
            ),
            actor_user_id=actor_user_id,
        )
        self.db.commit()

        return ScheduleResult(schedule=schedule, inserted=inserted, notices=notices)


class UpdateScheduleUseCase:
    """Change rule / duration / type / value and rebuild the future of the series."""

    def __init__(
        self,
        db: Session,
        clock: Clock = system_clock,
        tz: tzinfo | None = None,
        months_ahead: int | None = None,
    ):
        self.db = db
        self.event_repo = EventLogRepository(db)
        self.mutator = SeriesMutator(db, clock=clock, tz=tz, months_ahead=months_ahead)

    def execute(
        self,
        user_id: int,
        schedule_id: int,
        actor_user_id: int | None = None,
        **changes,
    ) -> ScheduleResult:
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise RecurrenceValidationError(f"Campos não editáveis: {', '.join(sorted(unknown))}")

        if "rrule_json" in changes:
            changes["rrule_json"] = rule_to_json(parse_rule(changes["rrule_json"]))
        validate_schedule_fields(
            changes.get("duration_minutes"), changes.get("session_type"), changes.get("session_value"),
        )

        schedule = get_owned_schedule(self.db, user_id, schedule_id)
        for key, value in changes.items():
            setattr(schedule, key, value)
        self.db.commit()

        deleted = inserted = 0
        notices: list[Notice] = []
        patient = get_owned_patient(self.db, user_id, schedule.patient_id)
        if schedule.is_active and not patient.is_archived:
            deleted, inserted = self.mutator.regenerate_future(schedule)
            if inserted == 0:
                notices.append(build_notice("NO_OCCURRENCES_GENERATED", schedule_id=schedule.id))

        self.event_repo.append_event(
            user_id=user_id,
            event_type="schedule_updated",
            payload=ScheduleEvents.updated(schedule_id, deleted, inserted, **changes),
            actor_user_id=actor_user_id,
        )
        self.db.commit()

        return ScheduleResult(schedule=schedule, deleted=deleted, inserted=inserted, notices=notices)


class DeactivateScheduleUseCase:
    """Retire a series: is_active=false and drop its future recurring sessions."""

    def __init__(self, db: Session, clock: Clock = system_clock):
        self.db = db
        self.clock = clock
        self.event_repo = EventLogRepository(db)

    def execute(self, user_id: int, schedule_id: int, actor_user_id: int | None = None) -> ScheduleResult:
        schedule = get_owned_schedule(self.db, user_id, schedule_id)
        if not schedule.is_active:
            return ScheduleResult(schedule=schedule)

        schedule.is_active = False
        deleted = SessionRepository(self.db).delete_by_filter(
            user_id, schedule_id=schedule_id, origin=ORIGIN_RECURRING, from_dt=self.clock(),
        )
        self.event_repo.append_event(
            user_id=user_id,
            event_type="schedule_deactivated",
            payload=ScheduleEvents.deactivated(schedule_id, deleted),
            actor_user_id=actor_user_id,
        )
        self.db.commit()
        logger.info("Deactivated schedule=%s, removed %d future sessions", schedule_id, deleted)

        return ScheduleResult(schedule=schedule, deleted=deleted)


def list_schedules(db: Session, user_id: int, include_inactive: bool = False) -> list[RecurringScheduleModel]:
    query = db.query(RecurringScheduleModel).filter(RecurringScheduleModel.user_id == user_id)
    if not include_inactive:
        query = query.filter(RecurringScheduleModel.is_active == True)
    return query.order_by(RecurringScheduleModel.created_at.desc(), RecurringScheduleModel.id.desc()).all()
