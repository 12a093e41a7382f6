"""RecurringSchedule domain entity - builds event_log payloads for schedule operations"""
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, Any

SESSION_TYPES = frozenset({"individual", "couple", "group", "online"})


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _money(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


class ScheduleEvents:
    @staticmethod
    def created(
        schedule_id: int,
        patient_id: int,
        rrule_json: Dict[str, Any],
        duration_minutes: int,
        session_type: str,
        session_value: Decimal | None,
        inserted: int,
    ) -> Dict[str, Any]:
        return {
            "schedule_id": schedule_id,
            "patient_id": patient_id,
            "rrule_json": rrule_json,
            "duration_minutes": duration_minutes,
            "session_type": session_type,
            "session_value": _money(session_value),
            "sessions_inserted": inserted,
            "created_at": _now(),
        }

    @staticmethod
    def updated(schedule_id: int, deleted: int, inserted: int, **changes) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "schedule_id": schedule_id,
            "sessions_deleted": deleted,
            "sessions_inserted": inserted,
            "updated_at": _now(),
        }
        for key in ("rrule_json", "duration_minutes", "session_type"):
            if key in changes:
                payload[key] = changes[key]
        if "session_value" in changes:
            payload["session_value"] = _money(changes["session_value"])
        return payload

    @staticmethod
    def deactivated(schedule_id: int, deleted: int) -> Dict[str, Any]:
        return {
            "schedule_id": schedule_id,
            "is_active": False,
            "sessions_deleted": deleted,
            "deactivated_at": _now(),
        }

    @staticmethod
    def series_moved(
        schedule_id: int,
        original_occurrence: datetime,
        target: datetime,
        old_rule: Dict[str, Any],
        new_rule: Dict[str, Any],
        deleted: int,
        inserted: int,
    ) -> Dict[str, Any]:
        return {
            "schedule_id": schedule_id,
            "original_occurrence": original_occurrence.isoformat(),
            "target": target.isoformat(),
            "old_rule": old_rule,
            "new_rule": new_rule,
            "downgraded": old_rule["frequency"] != new_rule["frequency"],
            "sessions_deleted": deleted,
            "sessions_inserted": inserted,
        }

    @staticmethod
    def occurrence_moved(
        schedule_id: int, session_id: int, occurrence_date: date, target: datetime,
    ) -> Dict[str, Any]:
        return {
            "schedule_id": schedule_id,
            "session_id": session_id,
            "exception_date": occurrence_date.isoformat(),
            "new_datetime": target.isoformat(),
        }

    @staticmethod
    def regenerated(schedule_id: int, patient_id: int, deleted: int, inserted: int) -> Dict[str, Any]:
        return {
            "schedule_id": schedule_id,
            "patient_id": patient_id,
            "sessions_deleted": deleted,
            "sessions_inserted": inserted,
        }
