"""
Tests for MaterializationEngine and the session repository insert path
"""
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from app.application.materialization import MaterializationEngine
from app.domain.errors import RecurrenceValidationError
from app.infrastructure.db.models import (
    Patient, RecurringScheduleModel, TherapySessionModel,
    ORIGIN_MANUAL, ORIGIN_RECURRING, STATUS_CANCELLED, STATUS_SCHEDULED,
)
from app.infrastructure.sessions.repository import SessionRepository
from app.utils.clock import as_utc, fixed_clock


UTC = timezone.utc


def _schedule(db, user, patient, rule, **kwargs) -> RecurringScheduleModel:
    schedule = RecurringScheduleModel(
        user_id=user.id,
        patient_id=patient.id,
        rrule_json=rule,
        duration_minutes=kwargs.pop("duration_minutes", 50),
        session_type=kwargs.pop("session_type", "individual"),
        **kwargs,
    )
    db.add(schedule)
    db.commit()
    return schedule


def _sessions(db, patient):
    return db.query(TherapySessionModel).filter(
        TherapySessionModel.patient_id == patient.id,
    ).order_by(TherapySessionModel.scheduled_at.asc()).all()


def test_materialize_inserts_future_occurrences(db_session, user, patient, clock, utc, weekly_monday_rule):
    schedule = _schedule(db_session, user, patient, weekly_monday_rule, session_type="online")
    engine = MaterializationEngine(db_session, clock=clock, months_ahead=1, tz=utc)

    inserted = engine.materialize(schedule)

    assert inserted == 5
    rows = _sessions(db_session, patient)
    assert [as_utc(r.scheduled_at).day for r in rows] == [1, 8, 15, 22, 29]
    for r in rows:
        assert r.origin == ORIGIN_RECURRING
        assert r.schedule_id == schedule.id
        assert r.status == STATUS_SCHEDULED
        assert r.paid is False
        assert r.modality == "online"
        assert r.duration_minutes == 50


def test_materialize_twice_inserts_nothing_second_time(db_session, user, patient, clock, utc, weekly_monday_rule):
    schedule = _schedule(db_session, user, patient, weekly_monday_rule)
    engine = MaterializationEngine(db_session, clock=clock, months_ahead=1, tz=utc)

    assert engine.materialize(schedule) == 5
    assert engine.materialize(schedule) == 0
    assert len(_sessions(db_session, patient)) == 5


def test_materialize_skips_instant_occupied_by_manual_session(
    db_session, user, patient, clock, utc, weekly_monday_rule,
):
    manual = TherapySessionModel(
        user_id=user.id,
        patient_id=patient.id,
        scheduled_at=datetime(2024, 1, 15, 9, 0, tzinfo=UTC),
        duration_minutes=50,
        origin=ORIGIN_MANUAL,
    )
    db_session.add(manual)
    db_session.commit()
    schedule = _schedule(db_session, user, patient, weekly_monday_rule)

    inserted = MaterializationEngine(db_session, clock=clock, months_ahead=1, tz=utc).materialize(schedule)

    assert inserted == 4
    rows = _sessions(db_session, patient)
    assert len(rows) == 5
    assert rows[2].id == manual.id
    assert rows[2].origin == ORIGIN_MANUAL
    assert rows[2].schedule_id is None


def test_cancelled_session_still_occupies_its_instant(db_session, user, patient, clock, utc, weekly_monday_rule):
    db_session.add(TherapySessionModel(
        user_id=user.id,
        patient_id=patient.id,
        scheduled_at=datetime(2024, 1, 8, 9, 0, tzinfo=UTC),
        duration_minutes=50,
        status=STATUS_CANCELLED,
        origin=ORIGIN_MANUAL,
    ))
    db_session.commit()
    schedule = _schedule(db_session, user, patient, weekly_monday_rule)

    inserted = MaterializationEngine(db_session, clock=clock, months_ahead=1, tz=utc).materialize(schedule)

    assert inserted == 4


def test_materialize_ignores_occurrences_before_now(db_session, user, patient, utc, weekly_monday_rule):
    schedule = _schedule(db_session, user, patient, weekly_monday_rule)
    clock = fixed_clock(datetime(2024, 1, 10, tzinfo=UTC))

    MaterializationEngine(db_session, clock=clock, months_ahead=1, tz=utc).materialize(schedule)

    days = [as_utc(r.scheduled_at).date().isoformat() for r in _sessions(db_session, patient)]
    assert days == ["2024-01-15", "2024-01-22", "2024-01-29", "2024-02-05"]


def test_materialize_rejects_malformed_stored_rule(db_session, user, patient, clock, utc):
    schedule = _schedule(db_session, user, patient, {"frequency": "weekly", "startDate": "2024-01-01"})

    with pytest.raises(RecurrenceValidationError):
        MaterializationEngine(db_session, clock=clock, months_ahead=1, tz=utc).materialize(schedule)

    assert _sessions(db_session, patient) == []


def test_materialize_for_user_skips_archived_and_inactive(
    db_session, user, patient, clock, utc, weekly_monday_rule,
):
    archived = Patient(user_id=user.id, name="Bruno Lima", is_archived=True)
    retired = Patient(user_id=user.id, name="Carla Dias")
    db_session.add_all([archived, retired])
    db_session.commit()

    active = _schedule(db_session, user, patient, weekly_monday_rule)
    _schedule(db_session, user, archived, weekly_monday_rule)
    _schedule(db_session, user, retired, weekly_monday_rule, is_active=False)

    result = MaterializationEngine(db_session, clock=clock, months_ahead=1, tz=utc).materialize_for_user(user.id)

    assert result == {active.id: 5}
    assert _sessions(db_session, archived) == []
    assert _sessions(db_session, retired) == []


# --- SessionRepository.insert_many ---

def _row(user, patient, at: datetime) -> dict:
    return {
        "user_id": user.id,
        "patient_id": patient.id,
        "scheduled_at": at,
        "duration_minutes": 50,
        "origin": ORIGIN_RECURRING,
    }


def test_insert_many_absorbs_duplicate_instants(db_session, user, patient):
    repo = SessionRepository(db_session)
    t1 = datetime(2024, 2, 5, 9, 0, tzinfo=UTC)
    t2 = datetime(2024, 2, 12, 9, 0, tzinfo=UTC)
    t3 = datetime(2024, 2, 19, 9, 0, tzinfo=UTC)
    assert repo.insert_many([_row(user, patient, t1)]) == 1

    inserted = repo.insert_many([_row(user, patient, t) for t in (t1, t2, t3)])

    assert inserted == 2
    assert len(_sessions(db_session, patient)) == 3


def test_insert_many_duplicate_within_batch(db_session, user, patient):
    t = datetime(2024, 2, 5, 9, 0, tzinfo=UTC)

    inserted = SessionRepository(db_session).insert_many([_row(user, patient, t), _row(user, patient, t)])

    assert inserted == 1


def test_insert_many_propagates_other_integrity_errors(db_session, user, patient):
    bad = _row(user, patient, datetime(2024, 2, 5, 9, 0, tzinfo=UTC))
    bad["patient_id"] = None

    with pytest.raises(IntegrityError):
        SessionRepository(db_session).insert_many([bad])


def test_insert_many_empty_is_noop(db_session):
    assert SessionRepository(db_session).insert_many([]) == 0
