"""
Session Repository - persistence primitives for concrete therapy sessions

insert-many / update-by-id / delete-by-filter / select-by-filter, keyed on
(user_id, patient_id, schedule_id, scheduled_at, origin). Instants are
written and compared in UTC.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, Query

from app.infrastructure.db.models import TherapySessionModel
from app.utils.clock import as_utc

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION_SQLSTATE = "23505"


def is_unique_violation(exc: IntegrityError) -> bool:
    """True for a unique-constraint violation (PostgreSQL 23505 or SQLite UNIQUE)."""
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is not None:
        return code == UNIQUE_VIOLATION_SQLSTATE
    return "UNIQUE constraint failed" in str(orig)


class SessionRepository:
    def __init__(self, db: Session):
        self.db = db

    def _filtered(
        self,
        user_id: int,
        patient_id: Optional[int] = None,
        schedule_id: Optional[int] = None,
        origin: Optional[str] = None,
        from_dt: Optional[datetime] = None,
        to_dt: Optional[datetime] = None,
    ) -> Query:
        query = self.db.query(TherapySessionModel).filter(TherapySessionModel.user_id == user_id)
        if patient_id is not None:
            query = query.filter(TherapySessionModel.patient_id == patient_id)
        if schedule_id is not None:
            query = query.filter(TherapySessionModel.schedule_id == schedule_id)
        if origin is not None:
            query = query.filter(TherapySessionModel.origin == origin)
        if from_dt is not None:
            query = query.filter(TherapySessionModel.scheduled_at >= as_utc(from_dt))
        if to_dt is not None:
            query = query.filter(TherapySessionModel.scheduled_at <= as_utc(to_dt))
        return query

    def select_by_filter(self, user_id: int, **filters) -> List[TherapySessionModel]:
        """Sessions matching the filter, ordered by scheduled_at ASC."""
        return self._filtered(user_id, **filters).order_by(TherapySessionModel.scheduled_at.asc()).all()

    def count_by_filter(self, user_id: int, **filters) -> int:
        return self._filtered(user_id, **filters).count()

    def delete_by_filter(self, user_id: int, **filters) -> int:
        """Bulk delete (not committed). Returns deleted row count."""
        return self._filtered(user_id, **filters).delete(synchronize_session=False)

    def scheduled_instants(self, patient_id: int, from_dt: datetime) -> Set[datetime]:
        """Occupied instants (any origin, any status) for a patient from from_dt on."""
        rows = self.db.query(TherapySessionModel.scheduled_at).filter(
            TherapySessionModel.patient_id == patient_id,
            TherapySessionModel.scheduled_at >= as_utc(from_dt),
        ).all()
        return {as_utc(row.scheduled_at) for row in rows}

    def get(self, session_id: int, user_id: int) -> Optional[TherapySessionModel]:
        return self.db.query(TherapySessionModel).filter(
            TherapySessionModel.id == session_id,
            TherapySessionModel.user_id == user_id,
        ).first()

    def update_by_id(self, session_id: int, user_id: int, **changes) -> Optional[TherapySessionModel]:
        """Apply changes to one owned session and flush. None if not found.

        Raises:
            IntegrityError: e.g. scheduled_at collides with another session of the patient
        """
        row = self.get(session_id, user_id)
        if row is None:
            return None
        if "scheduled_at" in changes:
            changes["scheduled_at"] = as_utc(changes["scheduled_at"])
        for key, value in changes.items():
            setattr(row, key, value)
        self.db.flush()
        return row

    def insert_many(self, rows: List[Dict[str, Any]]) -> int:
        """
        Insert sessions and commit, skipping rows that hit the
        (patient_id, scheduled_at) unique constraint.

        Fast path is one batch. If the batch hits a duplicate, falls back to
        row-by-row commits so every non-conflicting row still lands. Any other
        IntegrityError or storage error propagates.

        Returns:
            number of rows actually inserted
        """
        if not rows:
            return 0

        try:
            self.db.add_all([self._build(r) for r in rows])
            self.db.commit()
            return len(rows)
        except IntegrityError as e:
            self.db.rollback()
            if not is_unique_violation(e):
                raise
            logger.debug("Batch insert hit a duplicate instant, retrying row by row")

        inserted = 0
        for r in rows:
            self.db.add(self._build(r))
            try:
                self.db.commit()
                inserted += 1
            except IntegrityError as e:
                self.db.rollback()
                if not is_unique_violation(e):
                    raise
                logger.debug(
                    "Skipped duplicate session patient=%s at=%s", r.get("patient_id"), r.get("scheduled_at"),
                )
        return inserted

    @staticmethod
    def _build(values: Dict[str, Any]) -> TherapySessionModel:
        values = dict(values)
        values["scheduled_at"] = as_utc(values["scheduled_at"])
        return TherapySessionModel(**values)
