"""
Materialization Engine - turns a schedule's recurrence rule into session rows.

Reads the patient's occupied future instants first, then inserts only the
missing occurrences (origin='recurring'). Safe to call repeatedly: a second
call with no state change inserts nothing, and a concurrent insert of the
same instant is absorbed by the (patient_id, scheduled_at) constraint.

A plain top-up never refills a date whose occurrence was moved off the
series (a 'move' row in recurring_exceptions). Delete-then-regenerate
callers pass skip_detached=False to rebuild from the rule alone.
"""
import logging
from datetime import tzinfo

from sqlalchemy.orm import Session

from app.config import get_settings
from app.domain.recurrence import Clock, parse_rule, generate
from app.infrastructure.db.models import (
    Patient, RecurringExceptionModel, RecurringScheduleModel,
    EXCEPTION_MOVE, ORIGIN_RECURRING, STATUS_SCHEDULED,
)
from app.infrastructure.sessions.repository import SessionRepository
from app.utils.clock import system_clock, practice_timezone, as_utc

logger = logging.getLogger(__name__)


class MaterializationEngine:
    def __init__(
        self,
        db: Session,
        clock: Clock = system_clock,
        months_ahead: int | None = None,
        tz: tzinfo | None = None,
    ):
        self.db = db
        self.clock = clock
        self.months_ahead = months_ahead if months_ahead is not None else get_settings().MATERIALIZATION_MONTHS_AHEAD
        self.tz = tz or practice_timezone()
        self.sessions = SessionRepository(db)

    def materialize(self, schedule: RecurringScheduleModel, skip_detached: bool = True) -> int:
        """Insert missing future occurrences for one schedule. Returns count of new rows.

        Commits. Callers must commit their own pending changes first.

        Raises:
            RecurrenceValidationError: stored rule is malformed (before any I/O)
            SQLAlchemyError: storage failure other than a duplicate instant
        """
        rule = parse_rule(schedule.rrule_json)
        now = as_utc(self.clock())
        local = [
            dt for dt in generate(rule, self.months_ahead, self.clock, self.tz)
            if dt >= now
        ]

        if skip_detached:
            detached = self._detached_dates(schedule, now.astimezone(self.tz).date())
            local = [dt for dt in local if dt.date() not in detached]
        candidates = [as_utc(dt) for dt in local]

        existing = self.sessions.scheduled_instants(schedule.patient_id, now)

        rows = [
            {
                "user_id": schedule.user_id,
                "patient_id": schedule.patient_id,
                "schedule_id": schedule.id,
                "scheduled_at": dt,
                "duration_minutes": schedule.duration_minutes,
                "type": "therapy",
                "modality": schedule.session_type,
                "value": schedule.session_value,
                "status": STATUS_SCHEDULED,
                "paid": False,
                "origin": ORIGIN_RECURRING,
            }
            for dt in candidates
            if dt not in existing
        ]

        inserted = self.sessions.insert_many(rows)
        logger.info(
            "Materialized schedule=%s patient=%s: %d candidates, %d inserted",
            schedule.id, schedule.patient_id, len(candidates), inserted,
        )
        return inserted

    def _detached_dates(self, schedule: RecurringScheduleModel, from_date) -> set:
        """Practice-local dates of this series' occurrences that were moved away."""
        rows = self.db.query(RecurringExceptionModel.exception_date).filter(
            RecurringExceptionModel.schedule_id == schedule.id,
            RecurringExceptionModel.exception_type == EXCEPTION_MOVE,
            RecurringExceptionModel.exception_date >= from_date,
        ).all()
        return {row[0] for row in rows}

    def materialize_for_user(self, user_id: int) -> dict[int, int]:
        """Top up every active schedule of non-archived patients (rolling window).

        Returns {schedule_id: inserted}.
        """
        schedules = self.db.query(RecurringScheduleModel).join(
            Patient, Patient.id == RecurringScheduleModel.patient_id,
        ).filter(
            RecurringScheduleModel.user_id == user_id,
            RecurringScheduleModel.is_active == True,
            Patient.is_archived == False,
        ).order_by(RecurringScheduleModel.id.asc()).all()

        return {s.id: self.materialize(s) for s in schedules}
