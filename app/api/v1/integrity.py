"""
Integrity check API endpoints - series drift report and repair
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_current_user, get_clock
from app.application.integrity import IntegrityAuditor
from app.application.series import SeriesMutator
from app.domain.recurrence import Clock
from app.infrastructure.db.models import User


router = APIRouter(prefix="/api/v1", tags=["integrity"])


class IntegrityReportResponse(BaseModel):
    total: int
    affected: int
    healthy: int
    drifted_patient_ids: list[int]


class RepairRequest(BaseModel):
    patient_ids: list[int] | None = None  # None = every drifted patient


class RepairFailure(BaseModel):
    patient_id: int
    error: str


class RepairResponse(BaseModel):
    success: list[int]
    failed: list[RepairFailure]


class RegenerateResponse(BaseModel):
    patient_id: int
    schedule_id: int
    deleted: int
    inserted: int
    notices: list[dict] = Field(default_factory=list)


@router.get("/integrity", response_model=IntegrityReportResponse)
def integrity_report(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """Patients whose active series has no future sessions"""
    report = IntegrityAuditor(db, clock=clock).check(user.id)
    return IntegrityReportResponse(
        total=report.total,
        affected=report.affected,
        healthy=report.healthy,
        drifted_patient_ids=report.drifted,
    )


@router.post("/integrity/repair", response_model=RepairResponse)
def integrity_repair(
    req: RepairRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """Regenerate the given (or all drifted) patients, one by one"""
    report = IntegrityAuditor(db, clock=clock).repair_all(user.id, req.patient_ids)
    return RepairResponse(
        success=report.success,
        failed=[RepairFailure(patient_id=pid, error=err) for pid, err in report.failed],
    )


@router.post("/patients/{patient_id}/regenerate", response_model=RegenerateResponse)
def regenerate_patient(
    patient_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """Purge and rebuild future recurring sessions of the patient's active series"""
    result = SeriesMutator(db, clock=clock).force_regenerate_for_patient(user.id, patient_id)
    return RegenerateResponse(
        patient_id=result.patient_id,
        schedule_id=result.schedule_id,
        deleted=result.deleted,
        inserted=result.inserted,
        notices=[n.as_dict() for n in result.notices],
    )
