from typing import Optional

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

import assessment
import damage
import overdue
import returns
from dependencies import get_actor, get_db
from filter_helpers import (
    blank_to_none,
    normalize_limit,
    normalize_offset,
    parse_damage_severity,
    parse_damage_status,
    parse_damage_type,
    parse_overdue_severity,
    parse_return_status,
)
from models import (
    Actor,
    Assessment,
    AssessmentIn,
    BulkResult,
    BulkReturnReviewIn,
    DamageReport,
    DamageReportIn,
    DamageReportUpdate,
    LateReturn,
    Return,
    ReturnIn,
    ReturnReviewIn,
    ReturnReviewResult,
    ReturnSubmission,
)

router = APIRouter(tags=["returns"])


@router.post("/reservations/{reservation_id}/return", response_model=ReturnSubmission, status_code=201)
def initiate_return_api(
    reservation_id: str,
    body: ReturnIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return returns.initiate_return(db, actor, reservation_id, body)


@router.get("/returns", response_model=list[Return])
def list_returns_api(
    status: Optional[str] = None,
    reservation_id: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return returns.list_returns(
        db,
        actor,
        status=parse_return_status(status),
        reservation_id=blank_to_none(reservation_id),
        user_id=blank_to_none(user_id),
        limit=normalize_limit(limit),
        offset=normalize_offset(offset),
    )


@router.get("/returns/overdue", response_model=list[LateReturn])
def late_returns_api(
    severity: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return overdue.late_returns(db, actor, severity=parse_overdue_severity(severity))


@router.post("/returns/bulk/review", response_model=BulkResult)
def bulk_review_returns_api(
    body: BulkReturnReviewIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return returns.bulk_review(db, actor, body)


@router.get("/returns/{return_id}", response_model=Return)
def get_return_api(
    return_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return returns.return_to_schema(returns.get_return(db, actor, return_id))


@router.put("/returns/{return_id}/review", response_model=ReturnReviewResult)
def review_return_api(
    return_id: str,
    body: ReturnReviewIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return returns.review_return(db, actor, return_id, body)


@router.post("/returns/{return_id}/assessment", response_model=Assessment, status_code=201)
def submit_assessment_api(
    return_id: str,
    body: AssessmentIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return assessment.submit_assessment(db, actor, return_id, body)


@router.get("/returns/{return_id}/assessments", response_model=list[Assessment])
def list_assessments_api(
    return_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return assessment.list_assessments(db, actor, return_id)


# -----------------------
# Damage reports
# -----------------------
@router.post("/returns/{return_id}/damage", response_model=DamageReport, status_code=201)
def create_damage_report_api(
    return_id: str,
    body: DamageReportIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return damage.damage_to_schema(damage.create_damage_report(db, actor, return_id, body))


@router.get("/damage-reports", response_model=list[DamageReport])
def list_damage_reports_api(
    status: Optional[str] = None,
    severity: Optional[str] = None,
    damage_type: Optional[str] = None,
    return_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return damage.list_damage_reports(
        db,
        actor,
        status=parse_damage_status(status),
        severity=parse_damage_severity(severity),
        damage_type=parse_damage_type(damage_type),
        return_id=blank_to_none(return_id),
        limit=normalize_limit(limit),
        offset=normalize_offset(offset),
    )


@router.get("/damage-reports/{report_id}", response_model=DamageReport)
def get_damage_report_api(
    report_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return damage.damage_to_schema(damage.get_damage_report(db, actor, report_id))


@router.patch("/damage-reports/{report_id}", response_model=DamageReport)
def update_damage_report_api(
    report_id: str,
    body: DamageReportUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return damage.damage_to_schema(damage.update_damage_report(db, actor, report_id, body))


@router.delete("/damage-reports/{report_id}", status_code=204)
def delete_damage_report_api(
    report_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    damage.delete_damage_report(db, actor, report_id)
    return Response(status_code=204)
