"""
Tests for recurring schedule use cases
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app.application.schedules import (
    CreateScheduleUseCase, UpdateScheduleUseCase, DeactivateScheduleUseCase, list_schedules,
)
from app.domain.errors import NotFoundError, RecurrenceValidationError
from app.infrastructure.db.models import (
    EventLog, Patient, RecurringScheduleModel, TherapySessionModel, ORIGIN_RECURRING,
)
from app.utils.clock import as_utc


UTC = timezone.utc


@pytest.fixture
def create(db_session, clock, utc):
    return CreateScheduleUseCase(db_session, clock=clock, tz=utc, months_ahead=1)


def _future_recurring(db, schedule_id):
    return db.query(TherapySessionModel).filter(
        TherapySessionModel.schedule_id == schedule_id,
        TherapySessionModel.origin == ORIGIN_RECURRING,
    ).order_by(TherapySessionModel.scheduled_at.asc()).all()


def test_create_schedule_materializes_sessions(db_session, user, patient, create, weekly_monday_rule):
    result = create.execute(
        user_id=user.id,
        patient_id=patient.id,
        rrule_json=weekly_monday_rule,
        session_type="couple",
        session_value=Decimal("180.00"),
        actor_user_id=user.id,
    )

    schedule = result.schedule
    assert schedule.is_active is True
    assert schedule.duration_minutes == 50
    assert schedule.rrule_json["daysOfWeek"] == [1]
    assert result.inserted == 5
    assert result.notices == []

    sessions = _future_recurring(db_session, schedule.id)
    assert len(sessions) == 5
    assert all(s.value == Decimal("180.00") for s in sessions)
    assert all(s.modality == "couple" for s in sessions)

    event = db_session.query(EventLog).filter(EventLog.event_type == "schedule_created").one()
    assert event.payload_json["session_value"] == "180.00"
    assert event.payload_json["sessions_inserted"] == 5
    assert event.actor_user_id == user.id


def test_create_second_active_schedule_rejected(db_session, user, patient, create, weekly_monday_rule):
    create.execute(user_id=user.id, patient_id=patient.id, rrule_json=weekly_monday_rule)

    with pytest.raises(RecurrenceValidationError, match="já tem a agenda ativa"):
        create.execute(user_id=user.id, patient_id=patient.id, rrule_json=weekly_monday_rule)

    assert db_session.query(RecurringScheduleModel).count() == 1


def test_create_for_archived_patient_rejected(db_session, user, create, weekly_monday_rule):
    archived = Patient(user_id=user.id, name="Bruno Lima", is_archived=True)
    db_session.add(archived)
    db_session.commit()

    with pytest.raises(RecurrenceValidationError):
        create.execute(user_id=user.id, patient_id=archived.id, rrule_json=weekly_monday_rule)


def test_create_for_unknown_patient(user, create, weekly_monday_rule):
    with pytest.raises(NotFoundError):
        create.execute(user_id=user.id, patient_id=9999, rrule_json=weekly_monday_rule)


@pytest.mark.parametrize("kwargs", [
    {"rrule_json": {"frequency": "weekly", "interval": 1, "startDate": "2024-01-01", "startTime": "09:00"}},
    {"duration_minutes": 0},
    {"session_type": "sauna"},
    {"session_value": Decimal("-1")},
])
def test_create_rejects_invalid_input_before_writing(db_session, user, patient, create, weekly_monday_rule, kwargs):
    params = {"user_id": user.id, "patient_id": patient.id, "rrule_json": weekly_monday_rule}
    params.update(kwargs)

    with pytest.raises(RecurrenceValidationError):
        create.execute(**params)

    assert db_session.query(RecurringScheduleModel).count() == 0
    assert db_session.query(TherapySessionModel).count() == 0


def test_create_beyond_horizon_returns_notice(user, patient, create, weekly_monday_rule):
    weekly_monday_rule["startDate"] = "2030-01-07"

    result = create.execute(user_id=user.id, patient_id=patient.id, rrule_json=weekly_monday_rule)

    assert result.inserted == 0
    assert [n.code for n in result.notices] == ["NO_OCCURRENCES_GENERATED"]


def test_update_rule_rebuilds_future(db_session, user, patient, clock, utc, create, weekly_monday_rule):
    schedule = create.execute(user_id=user.id, patient_id=patient.id, rrule_json=weekly_monday_rule).schedule
    thursday = dict(weekly_monday_rule, daysOfWeek=[4], startTime="16:00")

    result = UpdateScheduleUseCase(db_session, clock=clock, tz=utc, months_ahead=1).execute(
        user_id=user.id, schedule_id=schedule.id, rrule_json=thursday,
    )

    assert result.deleted == 5
    assert result.inserted == 4  # Jan 4, 11, 18, 25
    sessions = _future_recurring(db_session, schedule.id)
    assert [as_utc(s.scheduled_at) for s in sessions] == [
        datetime(2024, 1, d, 16, 0, tzinfo=UTC) for d in (4, 11, 18, 25)
    ]

    event = db_session.query(EventLog).filter(EventLog.event_type == "schedule_updated").one()
    assert event.payload_json["rrule_json"]["daysOfWeek"] == [4]


def test_update_duration_applies_to_future_sessions(db_session, user, patient, clock, utc, create, weekly_monday_rule):
    schedule = create.execute(user_id=user.id, patient_id=patient.id, rrule_json=weekly_monday_rule).schedule

    UpdateScheduleUseCase(db_session, clock=clock, tz=utc, months_ahead=1).execute(
        user_id=user.id, schedule_id=schedule.id, duration_minutes=80,
    )

    assert {s.duration_minutes for s in _future_recurring(db_session, schedule.id)} == {80}


def test_update_rejects_unknown_fields(db_session, user, patient, clock, utc, create, weekly_monday_rule):
    schedule = create.execute(user_id=user.id, patient_id=patient.id, rrule_json=weekly_monday_rule).schedule

    with pytest.raises(RecurrenceValidationError, match="patient_id"):
        UpdateScheduleUseCase(db_session, clock=clock, tz=utc).execute(
            user_id=user.id, schedule_id=schedule.id, patient_id=2,
        )


def test_update_archived_patient_does_not_regenerate(
    db_session, user, patient, clock, utc, create, weekly_monday_rule,
):
    schedule = create.execute(user_id=user.id, patient_id=patient.id, rrule_json=weekly_monday_rule).schedule
    patient.is_archived = True
    db_session.commit()

    result = UpdateScheduleUseCase(db_session, clock=clock, tz=utc, months_ahead=1).execute(
        user_id=user.id, schedule_id=schedule.id, session_type="online",
    )

    assert (result.deleted, result.inserted) == (0, 0)
    assert result.schedule.session_type == "online"


def test_deactivate_schedule_purges_future_recurring(db_session, user, patient, clock, create, weekly_monday_rule):
    schedule = create.execute(user_id=user.id, patient_id=patient.id, rrule_json=weekly_monday_rule).schedule
    use_case = DeactivateScheduleUseCase(db_session, clock=clock)

    result = use_case.execute(user.id, schedule.id)

    assert result.schedule.is_active is False
    assert result.deleted == 5
    assert _future_recurring(db_session, schedule.id) == []
    assert db_session.get(RecurringScheduleModel, schedule.id) is not None

    # Idempotent
    assert use_case.execute(user.id, schedule.id).deleted == 0
    assert db_session.query(EventLog).filter(EventLog.event_type == "schedule_deactivated").count() == 1


def test_new_schedule_allowed_after_deactivation(db_session, user, patient, clock, create, weekly_monday_rule):
    first = create.execute(user_id=user.id, patient_id=patient.id, rrule_json=weekly_monday_rule).schedule
    DeactivateScheduleUseCase(db_session, clock=clock).execute(user.id, first.id)

    second = create.execute(user_id=user.id, patient_id=patient.id, rrule_json=weekly_monday_rule)

    assert second.schedule.id != first.id
    assert second.inserted == 5


def test_list_schedules_filters_inactive(db_session, user, patient, clock, create, weekly_monday_rule):
    first = create.execute(user_id=user.id, patient_id=patient.id, rrule_json=weekly_monday_rule).schedule
    DeactivateScheduleUseCase(db_session, clock=clock).execute(user.id, first.id)
    second = create.execute(user_id=user.id, patient_id=patient.id, rrule_json=weekly_monday_rule).schedule

    assert [s.id for s in list_schedules(db_session, user.id)] == [second.id]
    assert {s.id for s in list_schedules(db_session, user.id, include_inactive=True)} == {first.id, second.id}


def test_deactivate_unknown_schedule(db_session, user, clock):
    with pytest.raises(NotFoundError):
        DeactivateScheduleUseCase(db_session, clock=clock).execute(user.id, 31337)
