"""
Seed a demo practice: one therapist, a few patients, their recurring schedules.
Run:  python seed_test_data.py
"""
from datetime import date, timedelta
from decimal import Decimal

# ── bootstrap ────────────────────────────────────────────────────
from app.infrastructure.db.session import get_session_factory
from app.infrastructure.db.models import User, Patient, RecurringScheduleModel
from app.application.schedules import CreateScheduleUseCase
from app.application.integrity import IntegrityAuditor

EMAIL = "terapeuta@agenda.local"

db = get_session_factory()()

user = db.query(User).filter(User.email == EMAIL).first()
if not user:
    user = User(email=EMAIL)
    db.add(user)
    db.commit()
    print(f"Created user {EMAIL} (id={user.id})")

# next Monday, so every series starts in the future
today = date.today()
monday = today + timedelta(days=(7 - today.weekday()) % 7 or 7)

PATIENTS = [
    # name, rule, session_type, value
    ("Ana Souza", {"frequency": "weekly", "daysOfWeek": [1], "startTime": "09:00"}, "individual", "180.00"),
    ("Bruno e Carla Lima", {"frequency": "biweekly", "daysOfWeek": [3], "startTime": "18:30"}, "couple", "260.00"),
    ("Diego Rocha", {"frequency": "custom", "daysOfWeek": [2, 4], "startTime": "14:00"}, "online", "150.00"),
    ("Elisa Prado", {"frequency": "monthly", "interval": 1, "startTime": "10:00"}, "individual", "200.00"),
]

create = CreateScheduleUseCase(db)

for name, rule, session_type, value in PATIENTS:
    patient = db.query(Patient).filter(Patient.user_id == user.id, Patient.name == name).first()
    if not patient:
        patient = Patient(user_id=user.id, name=name)
        db.add(patient)
        db.commit()

    has_schedule = db.query(RecurringScheduleModel).filter(
        RecurringScheduleModel.patient_id == patient.id,
        RecurringScheduleModel.is_active == True,
    ).count()
    if has_schedule:
        print(f"  {name}: schedule exists, skipped")
        continue

    start = monday + timedelta(days=max(rule.get("daysOfWeek") or [1]) - 1)
    result = create.execute(
        user_id=user.id,
        patient_id=patient.id,
        rrule_json={**rule, "startDate": start.isoformat()},
        session_type=session_type,
        session_value=Decimal(value),
        actor_user_id=user.id,
    )
    print(f"  {name}: schedule #{result.schedule.id}, {result.inserted} sessions")

report = IntegrityAuditor(db).check(user.id)
print(f"Integrity: {report.healthy}/{report.total} healthy, {report.affected} drifted")

db.close()
