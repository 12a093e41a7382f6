"""
Tests for the scheduling API endpoints (schedules, sessions, integrity)

Requests run against the in-memory SQLite engine; the clock is pinned to
2024-01-01 00:00 UTC (2023-12-31 21:00 in America/Sao_Paulo).
"""
import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker, Session

from app.api.deps import get_db, get_current_user, get_clock
from app.infrastructure.db.models import Patient, TherapySessionModel, User
from app.main import app


@pytest.fixture
def client(db_engine, user, clock):
    """Test client with DB, auth and clock dependencies overridden"""
    SessionLocal = sessionmaker(bind=db_engine)
    user_id = user.id

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    def override_current_user(db: Session = Depends(get_db)) -> User:
        return db.query(User).filter(User.id == user_id).first()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_current_user
    app.dependency_overrides[get_clock] = lambda: clock
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create_schedule(client, patient_id, **overrides):
    body = {
        "patient_id": patient_id,
        "rrule": {
            "frequency": "weekly",
            "interval": 1,
            "daysOfWeek": [1],
            "startDate": "2024-01-01",
            "startTime": "09:00",
        },
    }
    body.update(overrides)
    return client.post("/api/v1/schedules", json=body)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.text == "ok"


def test_requires_authentication(client):
    app.dependency_overrides.pop(get_current_user)

    response = client.get("/api/v1/schedules")

    assert response.status_code == 401


def test_create_schedule(client, patient):
    response = _create_schedule(client, patient.id, session_value="150.00")

    assert response.status_code == 201
    data = response.json()
    assert data["patient_id"] == patient.id
    assert data["is_active"] is True
    assert data["duration_minutes"] == 50
    assert data["session_value"] == "150.00"
    assert data["rrule"]["daysOfWeek"] == [1]
    assert data["inserted"] == 53  # every Monday of 2024
    assert data["sessions_next_month"] == 5  # January 2024
    assert data["notices"] == []


def test_create_second_active_schedule_is_400(client, patient):
    assert _create_schedule(client, patient.id).status_code == 201

    response = _create_schedule(client, patient.id)

    assert response.status_code == 400
    assert "agenda ativa" in response.json()["detail"]


def test_create_schedule_invalid_rule_is_400(client, patient):
    response = _create_schedule(client, patient.id, rrule={"frequency": "weekly", "interval": 0})
    assert response.status_code == 400


def test_create_schedule_unknown_patient_is_404(client):
    assert _create_schedule(client, 4040).status_code == 404


def test_list_update_deactivate_schedule(client, patient):
    schedule_id = _create_schedule(client, patient.id).json()["schedule_id"]

    listed = client.get("/api/v1/schedules").json()
    assert [s["schedule_id"] for s in listed] == [schedule_id]

    updated = client.patch(f"/api/v1/schedules/{schedule_id}", json={"duration_minutes": 60})
    assert updated.status_code == 200
    assert updated.json()["duration_minutes"] == 60
    assert updated.json()["deleted"] == 53
    assert updated.json()["inserted"] == 53

    assert client.patch(f"/api/v1/schedules/{schedule_id}", json={"duration_minutes": None}).status_code == 422

    retired = client.post(f"/api/v1/schedules/{schedule_id}/deactivate")
    assert retired.status_code == 200
    assert retired.json()["is_active"] is False
    assert retired.json()["deleted"] == 53

    assert client.get("/api/v1/schedules").json() == []
    assert len(client.get("/api/v1/schedules", params={"include_inactive": True}).json()) == 1


def test_materialize_endpoint_is_idempotent(client, patient):
    schedule_id = _create_schedule(client, patient.id).json()["schedule_id"]

    response = client.post(f"/api/v1/schedules/{schedule_id}/materialize")

    assert response.status_code == 200
    assert response.json()["inserted"] == 0


def test_materialize_inactive_schedule_is_400(client, patient):
    schedule_id = _create_schedule(client, patient.id).json()["schedule_id"]
    client.post(f"/api/v1/schedules/{schedule_id}/deactivate")

    assert client.post(f"/api/v1/schedules/{schedule_id}/materialize").status_code == 400


def test_create_session_and_conflict(client, patient):
    body = {"patient_id": patient.id, "scheduled_at": "2024-01-03T10:00:00-03:00"}

    created = client.post("/api/v1/sessions", json=body)
    assert created.status_code == 201
    data = created.json()
    assert data["origin"] == "manual"
    assert data["schedule_id"] is None
    assert data["scheduled_at"].startswith("2024-01-03T13:00:00")

    assert client.post("/api/v1/sessions", json=body).status_code == 409


def test_create_session_requires_offset(client, patient):
    response = client.post(
        "/api/v1/sessions", json={"patient_id": patient.id, "scheduled_at": "2024-01-03T10:00:00"},
    )
    assert response.status_code == 422


def test_list_sessions_in_range(client, patient):
    _create_schedule(client, patient.id)

    response = client.get(
        "/api/v1/sessions",
        params={"start": "2024-01-01T00:00:00Z", "end": "2024-01-31T23:59:59Z"},
    )

    assert response.status_code == 200
    sessions = response.json()
    assert len(sessions) == 5
    assert all(s["origin"] == "recurring" for s in sessions)
    assert sessions[0]["scheduled_at"].startswith("2024-01-01T12:00:00")  # 09:00 in São Paulo


def test_move_single_detaches(client, patient):
    _create_schedule(client, patient.id)
    first = client.get(
        "/api/v1/sessions", params={"start": "2024-01-01T00:00:00Z", "end": "2024-01-10T00:00:00Z"},
    ).json()[0]

    response = client.post(
        f"/api/v1/sessions/{first['session_id']}/move",
        json={"target": "2024-01-02T09:00:00-03:00", "scope": "single"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["scope"] == "single"
    assert data["detached"] is True
    assert data["session"]["origin"] == "manual"
    assert data["session"]["scheduled_at"].startswith("2024-01-02T12:00:00")


def test_move_series_downgrades_custom_rule(client, patient):
    custom = {
        "frequency": "custom",
        "interval": 1,
        "daysOfWeek": [1, 3],
        "startDate": "2024-01-01",
        "startTime": "09:00",
    }
    _create_schedule(client, patient.id, rrule=custom)
    first = client.get(
        "/api/v1/sessions", params={"start": "2024-01-01T00:00:00Z", "end": "2024-01-10T00:00:00Z"},
    ).json()[0]

    response = client.post(
        f"/api/v1/sessions/{first['session_id']}/move",
        json={"target": "2024-01-05T08:00:00-03:00", "scope": "series"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["scope"] == "series"
    assert data["rrule"]["frequency"] == "weekly"
    assert data["rrule"]["daysOfWeek"] == [5]
    assert data["rrule"]["startTime"] == "08:00"
    assert [n["code"] for n in data["notices"]] == ["RULE_DOWNGRADED_TO_WEEKLY"]
    assert data["inserted"] > 0


def test_move_conflict_is_409(client, patient):
    _create_schedule(client, patient.id)
    sessions = client.get(
        "/api/v1/sessions", params={"start": "2024-01-01T00:00:00Z", "end": "2024-01-10T00:00:00Z"},
    ).json()

    response = client.post(
        f"/api/v1/sessions/{sessions[0]['session_id']}/move",
        json={"target": sessions[1]["scheduled_at"]},
    )

    assert response.status_code == 409


def test_move_series_of_standalone_session_is_400(client, patient):
    created = client.post(
        "/api/v1/sessions", json={"patient_id": patient.id, "scheduled_at": "2024-01-03T10:00:00Z"},
    ).json()

    response = client.post(
        f"/api/v1/sessions/{created['session_id']}/move",
        json={"target": "2024-01-04T10:00:00Z", "scope": "series"},
    )

    assert response.status_code == 400


def test_move_unknown_session_is_404(client):
    response = client.post("/api/v1/sessions/999/move", json={"target": "2024-01-04T10:00:00Z"})
    assert response.status_code == 404


def test_integrity_report_and_repair(client, db_session, patient):
    _create_schedule(client, patient.id)
    assert client.get("/api/v1/integrity").json() == {
        "total": 1, "affected": 0, "healthy": 1, "drifted_patient_ids": [],
    }

    db_session.query(TherapySessionModel).delete()
    db_session.commit()

    report = client.get("/api/v1/integrity").json()
    assert report["affected"] == 1
    assert report["drifted_patient_ids"] == [patient.id]

    repaired = client.post("/api/v1/integrity/repair", json={})
    assert repaired.status_code == 200
    assert repaired.json() == {"success": [patient.id], "failed": []}

    assert client.get("/api/v1/integrity").json()["affected"] == 0


def test_repair_reports_failures(client, db_session, user, patient):
    archived = Patient(user_id=user.id, name="Bruno Lima", is_archived=True)
    db_session.add(archived)
    db_session.commit()

    response = client.post("/api/v1/integrity/repair", json={"patient_ids": [archived.id]})

    assert response.status_code == 200
    failed = response.json()["failed"]
    assert [f["patient_id"] for f in failed] == [archived.id]


def test_regenerate_patient(client, patient):
    _create_schedule(client, patient.id)

    response = client.post(f"/api/v1/patients/{patient.id}/regenerate")

    assert response.status_code == 200
    data = response.json()
    assert data["deleted"] == 53
    assert data["inserted"] == 53


def test_regenerate_patient_without_schedule_is_404(client, patient):
    assert client.post(f"/api/v1/patients/{patient.id}/regenerate").status_code == 404
