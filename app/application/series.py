"""
Series mutations - structural edits to a live recurring series.

- update_series_from_occurrence: re-anchor the rule on a dragged occurrence
  and rebuild the series from that occurrence onward
- move_single_occurrence: detach one session (origin -> 'manual') and move it
- force_regenerate_for_patient: purge future recurring sessions and rebuild

Sessions with origin='manual' are never deleted by these paths, even when
they carry the schedule_id.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, tzinfo
from typing import Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.application.materialization import MaterializationEngine
from app.application.notices import Notice, build_notice, WEEKDAY_NAMES
from app.application.sessions import MoveSessionUseCase
from app.domain.errors import NotFoundError, RecurrenceValidationError, SessionConflictError
from app.domain.recurrence import (
    Clock, RecurrenceRule, WeeklyRule, BiweeklyRule, MonthlyRule,
    parse_rule, rule_to_json, sunday_weekday,
)
from app.domain.schedule import ScheduleEvents
from app.infrastructure.db.models import (
    Patient, RecurringScheduleModel, RecurringExceptionModel, TherapySessionModel,
    ORIGIN_RECURRING, ORIGIN_MANUAL, EXCEPTION_MOVE,
)
from app.infrastructure.eventlog.repository import EventLogRepository
from app.infrastructure.sessions.repository import SessionRepository, is_unique_violation
from app.utils.clock import system_clock, practice_timezone, as_utc

logger = logging.getLogger(__name__)


# ============================================================================
# Lookups (ownership-scoped)
# ============================================================================

def get_owned_patient(db: Session, user_id: int, patient_id: int) -> Patient:
    patient = db.query(Patient).filter(
        Patient.id == patient_id,
        Patient.user_id == user_id,
    ).first()
    if not patient:
        raise NotFoundError(f"Paciente #{patient_id} não encontrado")
    return patient


def get_owned_schedule(db: Session, user_id: int, schedule_id: int) -> RecurringScheduleModel:
    schedule = db.query(RecurringScheduleModel).filter(
        RecurringScheduleModel.id == schedule_id,
        RecurringScheduleModel.user_id == user_id,
    ).first()
    if not schedule:
        raise NotFoundError(f"Agenda #{schedule_id} não encontrada")
    return schedule


def get_active_schedule_for_patient(db: Session, user_id: int, patient_id: int) -> RecurringScheduleModel:
    """The patient's single active schedule.

    Raises:
        NotFoundError: none active
        RecurrenceValidationError: more than one active (invariant broken)
    """
    schedules = db.query(RecurringScheduleModel).filter(
        RecurringScheduleModel.user_id == user_id,
        RecurringScheduleModel.patient_id == patient_id,
        RecurringScheduleModel.is_active == True,
    ).all()
    if not schedules:
        raise NotFoundError(f"Nenhuma agenda ativa para o paciente #{patient_id}")
    if len(schedules) > 1:
        raise RecurrenceValidationError(
            f"Paciente #{patient_id} tem {len(schedules)} agendas ativas"
        )
    return schedules[0]


def ensure_patient_not_archived(patient: Patient) -> None:
    if patient.is_archived:
        raise RecurrenceValidationError(f"Paciente #{patient.id} está arquivado")


# ============================================================================
# Rule re-anchoring
# ============================================================================

def derive_series_rule(rule: RecurrenceRule, target_local: datetime) -> tuple[RecurrenceRule, bool]:
    """New rule anchored on target_local (practice wall-clock).

    weekly/biweekly keep their frequency on the target weekday; monthly keeps
    its interval and takes the target's day-of-month. Anything else becomes
    weekly. Returns (rule, downgraded).
    """
    start_date = target_local.date()
    start_time = time(target_local.hour, target_local.minute)
    weekday = sunday_weekday(start_date)

    if isinstance(rule, WeeklyRule):
        return WeeklyRule(weekday=weekday, start_date=start_date, start_time=start_time), False
    if isinstance(rule, BiweeklyRule):
        return BiweeklyRule(weekday=weekday, start_date=start_date, start_time=start_time), False
    if isinstance(rule, MonthlyRule):
        return MonthlyRule(interval=rule.interval, start_date=start_date, start_time=start_time), False
    return WeeklyRule(weekday=weekday, start_date=start_date, start_time=start_time), True


# ============================================================================
# Commands
# ============================================================================

@dataclass(frozen=True)
class MoveOccurrence:
    """Move one session; detaches it if it belongs to a series."""
    session_id: int
    target: datetime


@dataclass(frozen=True)
class MoveSeries:
    """Re-anchor a series on the occurrence that was dropped on target."""
    schedule_id: int
    original_occurrence: datetime
    target: datetime


MoveCommand = Union[MoveOccurrence, MoveSeries]


@dataclass
class SeriesMoveResult:
    schedule_id: int
    rrule_json: dict
    deleted: int
    inserted: int
    notices: list[Notice] = field(default_factory=list)


@dataclass
class OccurrenceMoveResult:
    session: TherapySessionModel
    detached: bool
    notices: list[Notice] = field(default_factory=list)


@dataclass
class RegenerationResult:
    schedule_id: int
    patient_id: int
    deleted: int
    inserted: int
    notices: list[Notice] = field(default_factory=list)


class SeriesMutator:
    def __init__(
        self,
        db: Session,
        clock: Clock = system_clock,
        tz: tzinfo | None = None,
        months_ahead: int | None = None,
    ):
        self.db = db
        self.clock = clock
        self.tz = tz or practice_timezone()
        self.sessions = SessionRepository(db)
        self.event_repo = EventLogRepository(db)
        self.engine = MaterializationEngine(db, clock=clock, months_ahead=months_ahead, tz=self.tz)

    def handle(self, user_id: int, command: MoveCommand):
        """Dispatch a move command coming from the agenda."""
        if isinstance(command, MoveSeries):
            return self.update_series_from_occurrence(
                user_id, command.schedule_id, command.original_occurrence, command.target,
            )

        session = self.sessions.get(command.session_id, user_id)
        if session is None:
            raise NotFoundError(f"Sessão #{command.session_id} não encontrada")
        if session.schedule_id is None:
            moved = MoveSessionUseCase(self.db).execute(user_id, command.session_id, command.target)
            return OccurrenceMoveResult(session=moved, detached=False)

        occurrence_date = as_utc(session.scheduled_at).astimezone(self.tz).date()
        return self.move_single_occurrence(
            user_id, command.session_id, session.schedule_id, occurrence_date, command.target,
        )

    def update_series_from_occurrence(
        self,
        user_id: int,
        schedule_id: int,
        original_occurrence: datetime,
        target: datetime,
    ) -> SeriesMoveResult:
        """Re-anchor the rule on target and rebuild from original_occurrence onward.

        Recurring sessions at or after original_occurrence are deleted (manual
        ones are kept), then the series is re-materialized from the new rule.
        The delete is committed before regeneration; a failure in between
        leaves the series empty until the integrity audit repairs it.
        """
        schedule = get_owned_schedule(self.db, user_id, schedule_id)
        if not schedule.is_active:
            raise RecurrenceValidationError(f"Agenda #{schedule_id} está inativa")
        ensure_patient_not_archived(get_owned_patient(self.db, user_id, schedule.patient_id))

        old_json = dict(schedule.rrule_json)
        old_rule = parse_rule(old_json)
        target_local = as_utc(target).astimezone(self.tz)
        new_rule, downgraded = derive_series_rule(old_rule, target_local)
        new_json = rule_to_json(new_rule)

        notices: list[Notice] = []
        if downgraded:
            logger.warning(
                "Schedule %s: %s rule converted to weekly on series move", schedule_id, old_rule.frequency,
            )
            notices.append(build_notice(
                "RULE_DOWNGRADED_TO_WEEKLY",
                frequency=old_rule.frequency,
                time=new_rule.start_time.strftime("%H:%M"),
                weekday=WEEKDAY_NAMES[sunday_weekday(new_rule.start_date)],
            ))

        schedule.rrule_json = new_json
        deleted = self.sessions.delete_by_filter(
            user_id, schedule_id=schedule_id, origin=ORIGIN_RECURRING, from_dt=original_occurrence,
        )
        self.db.commit()

        inserted = self.engine.materialize(schedule, skip_detached=False)

        self.event_repo.append_event(
            user_id=user_id,
            event_type="series_moved",
            payload=ScheduleEvents.series_moved(
                schedule_id, as_utc(original_occurrence), as_utc(target),
                old_json, new_json, deleted, inserted,
            ),
            actor_user_id=user_id,
        )
        self.db.commit()

        return SeriesMoveResult(
            schedule_id=schedule_id, rrule_json=new_json,
            deleted=deleted, inserted=inserted, notices=notices,
        )

    def move_single_occurrence(
        self,
        user_id: int,
        session_id: int,
        schedule_id: int,
        occurrence_date: date,
        target: datetime,
    ) -> OccurrenceMoveResult:
        """Move one occurrence and detach it from bulk regeneration.

        Raises:
            NotFoundError: session missing, foreign, or not in this series
            SessionConflictError: the patient already has a session at target
        """
        session = self.sessions.get(session_id, user_id)
        if session is None or session.schedule_id != schedule_id:
            raise NotFoundError(f"Sessão #{session_id} não pertence à agenda #{schedule_id}")

        try:
            self.sessions.update_by_id(session_id, user_id, scheduled_at=target, origin=ORIGIN_MANUAL)
        except IntegrityError as e:
            self.db.rollback()
            if is_unique_violation(e):
                raise SessionConflictError("Já existe uma sessão do paciente neste horário") from e
            raise

        self.db.add(RecurringExceptionModel(
            user_id=user_id,
            schedule_id=schedule_id,
            exception_date=occurrence_date,
            exception_type=EXCEPTION_MOVE,
            new_datetime=as_utc(target),
        ))
        self.event_repo.append_event(
            user_id=user_id,
            event_type="occurrence_moved",
            payload=ScheduleEvents.occurrence_moved(schedule_id, session_id, occurrence_date, as_utc(target)),
            actor_user_id=user_id,
        )
        self.db.commit()

        return OccurrenceMoveResult(session=session, detached=True)

    def regenerate_future(self, schedule: RecurringScheduleModel) -> tuple[int, int]:
        """Delete recurring sessions from now on and re-materialize. Returns (deleted, inserted)."""
        deleted = self.sessions.delete_by_filter(
            schedule.user_id, schedule_id=schedule.id, origin=ORIGIN_RECURRING, from_dt=self.clock(),
        )
        self.db.commit()
        inserted = self.engine.materialize(schedule, skip_detached=False)
        return deleted, inserted

    def force_regenerate_for_patient(self, user_id: int, patient_id: int) -> RegenerationResult:
        """Rebuild the future of the patient's active series.

        Raises:
            NotFoundError: unknown patient or no active schedule
            RecurrenceValidationError: patient archived or stored rule malformed
        """
        patient = get_owned_patient(self.db, user_id, patient_id)
        ensure_patient_not_archived(patient)
        schedule = get_active_schedule_for_patient(self.db, user_id, patient_id)
        parse_rule(schedule.rrule_json)

        deleted, inserted = self.regenerate_future(schedule)

        notices: list[Notice] = []
        if inserted == 0:
            notices.append(build_notice("NO_OCCURRENCES_GENERATED", schedule_id=schedule.id))

        self.event_repo.append_event(
            user_id=user_id,
            event_type="sessions_regenerated",
            payload=ScheduleEvents.regenerated(schedule.id, patient_id, deleted, inserted),
            actor_user_id=user_id,
        )
        self.db.commit()
        logger.info(
            "Regenerated patient=%s schedule=%s: deleted=%d inserted=%d",
            patient_id, schedule.id, deleted, inserted,
        )

        return RegenerationResult(
            schedule_id=schedule.id, patient_id=patient_id,
            deleted=deleted, inserted=inserted, notices=notices,
        )
