"""
Event Log Repository - append-only audit trail of schedule mutations
"""
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from sqlalchemy.orm import Session

from app.infrastructure.db.models import EventLog


class EventLogRepository:
    """
    Repository for the event_log table
    """

    def __init__(self, db: Session):
        self.db = db

    def append_event(
        self,
        user_id: int,
        event_type: str,
        payload: Dict[str, Any],
        occurred_at: Optional[datetime] = None,
        actor_user_id: Optional[int] = None,
    ) -> int:
        """
        Add an event to the log (flushed, not committed)

        Args:
            user_id: owning user
            event_type: e.g. "schedule_created", "occurrence_moved"
            payload: JSON-serialisable event data
            occurred_at: when it happened (default: now, UTC)
            actor_user_id: who did it (optional)

        Returns:
            event_id

        Example:
            >>> repo = EventLogRepository(db)
            >>> repo.append_event(
            ...     user_id=1,
            ...     event_type="schedule_created",
            ...     payload={"schedule_id": 7, "patient_id": 3},
            ... )
        """
        if occurred_at is None:
            occurred_at = datetime.now(timezone.utc)

        event = EventLog(
            user_id=user_id,
            actor_user_id=actor_user_id,
            event_type=event_type,
            payload_json=payload,
            occurred_at=occurred_at,
        )

        self.db.add(event)
        self.db.flush()

        return event.id

