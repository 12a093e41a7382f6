"""
Integrity auditor - finds recurring series that have no future sessions
and rebuilds them.

A patient is drifted when it is not archived, has exactly one active
schedule, and that schedule has no origin='recurring' session at or after
now. The audit itself never writes; repair goes through
SeriesMutator.force_regenerate_for_patient.
"""
import logging
from dataclasses import dataclass, field
from datetime import tzinfo

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.application.series import SeriesMutator, RegenerationResult
from app.domain.errors import SchedulingError
from app.domain.recurrence import Clock
from app.infrastructure.db.models import (
    Patient, RecurringScheduleModel, TherapySessionModel, User, ORIGIN_RECURRING,
)
from app.utils.clock import system_clock, as_utc

logger = logging.getLogger(__name__)


@dataclass
class IntegrityReport:
    total: int
    affected: int
    healthy: int
    drifted: list[int] = field(default_factory=list)


@dataclass
class RepairReport:
    success: list[int] = field(default_factory=list)
    failed: list[tuple[int, str]] = field(default_factory=list)


class IntegrityAuditor:
    def __init__(
        self,
        db: Session,
        clock: Clock = system_clock,
        tz: tzinfo | None = None,
        months_ahead: int | None = None,
    ):
        self.db = db
        self.clock = clock
        self.tz = tz
        self.months_ahead = months_ahead

    def _single_active_schedules(self, user_id: int) -> dict[int, int]:
        """{patient_id: schedule_id} for non-archived patients with exactly one active schedule."""
        rows = self.db.query(
            RecurringScheduleModel.patient_id,
            func.min(RecurringScheduleModel.id).label("schedule_id"),
        ).join(
            Patient, Patient.id == RecurringScheduleModel.patient_id,
        ).filter(
            RecurringScheduleModel.user_id == user_id,
            RecurringScheduleModel.is_active == True,
            Patient.is_archived == False,
        ).group_by(
            RecurringScheduleModel.patient_id,
        ).having(
            func.count(RecurringScheduleModel.id) == 1,
        ).all()
        return {row.patient_id: row.schedule_id for row in rows}

    def find_drifted(self, user_id: int) -> list[int]:
        """Patient ids whose active series has no future recurring session. Read-only."""
        singles = self._single_active_schedules(user_id)
        if not singles:
            return []

        now = as_utc(self.clock())
        healthy = {
            row.schedule_id for row in
            self.db.query(TherapySessionModel.schedule_id).filter(
                TherapySessionModel.user_id == user_id,
                TherapySessionModel.schedule_id.in_(list(singles.values())),
                TherapySessionModel.origin == ORIGIN_RECURRING,
                TherapySessionModel.scheduled_at >= now,
            ).distinct().all()
        }

        drifted = sorted(pid for pid, sid in singles.items() if sid not in healthy)
        if drifted:
            logger.info("User %s: %d drifted patients %s", user_id, len(drifted), drifted)
        return drifted

    def check(self, user_id: int) -> IntegrityReport:
        """Totals over non-archived patients plus the drifted ids."""
        total = self.db.query(Patient).filter(
            Patient.user_id == user_id,
            Patient.is_archived == False,
        ).count()
        drifted = self.find_drifted(user_id)
        return IntegrityReport(
            total=total, affected=len(drifted), healthy=total - len(drifted), drifted=drifted,
        )

    def repair(self, user_id: int, patient_id: int) -> RegenerationResult:
        return SeriesMutator(
            self.db, clock=self.clock, tz=self.tz, months_ahead=self.months_ahead,
        ).force_regenerate_for_patient(user_id, patient_id)

    def repair_all(self, user_id: int, patient_ids: list[int] | None = None) -> RepairReport:
        """Repair each patient; domain failures are collected, storage errors propagate."""
        if patient_ids is None:
            patient_ids = self.find_drifted(user_id)

        report = RepairReport()
        for patient_id in patient_ids:
            try:
                result = self.repair(user_id, patient_id)
            except SchedulingError as e:
                logger.warning("Repair failed for patient %s: %s", patient_id, e)
                report.failed.append((patient_id, str(e)))
                continue
            if result.inserted == 0:
                report.failed.append((patient_id, "Nenhuma sessão gerada"))
                continue
            report.success.append(patient_id)

        logger.info(
            "User %s repair: %d ok, %d failed", user_id, len(report.success), len(report.failed),
        )
        return report


def run_integrity_audit(db: Session, clock: Clock = system_clock) -> dict[int, RepairReport]:
    """Audit and repair every user. Returns {user_id: RepairReport} for users with drift."""
    auditor = IntegrityAuditor(db, clock=clock)
    reports: dict[int, RepairReport] = {}
    for (user_id,) in db.query(User.id).order_by(User.id.asc()).all():
        drifted = auditor.find_drifted(user_id)
        if drifted:
            reports[user_id] = auditor.repair_all(user_id, drifted)
    return reports
