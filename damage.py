"""Damage reports opened from a return.

A report has its own review queue, separate from the return's approval:
REPORTED -> UNDER_REVIEW -> APPROVED | REJECTED -> RESOLVED.  Reports do
not touch the item; the return review decides item status and condition.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

import audit
import crud
import errors
import permissions
import reputation
from models import (
    Actor,
    DamageReport,
    DamageReportIn,
    DamageReportStatus,
    DamageReportUpdate,
    DamageSeverity,
    DamageType,
    ItemCondition,
    Role,
)
from orm import DamageReportORM, ReturnORM
from returns import get_return_or_404

logger = logging.getLogger(__name__)

TRANSITIONS = {
    DamageReportStatus.REPORTED: {DamageReportStatus.UNDER_REVIEW},
    DamageReportStatus.UNDER_REVIEW: {DamageReportStatus.APPROVED, DamageReportStatus.REJECTED},
    DamageReportStatus.APPROVED: {DamageReportStatus.RESOLVED},
    DamageReportStatus.REJECTED: {DamageReportStatus.RESOLVED},
    DamageReportStatus.RESOLVED: set(),
}


def damage_to_schema(d: DamageReportORM) -> DamageReport:
    return DamageReport.model_validate(d)


def get_damage_report_or_404(db: Session, report_id: str) -> DamageReportORM:
    report = db.get(DamageReportORM, report_id)
    if report is None:
        raise errors.NotFoundError("damage report not found")
    return report


def get_damage_report(db: Session, actor: Actor, report_id: str) -> DamageReportORM:
    report = get_damage_report_or_404(db, report_id)
    permissions.require_owner_or_staff(actor, report.return_record.user_id, "view this damage report")
    return report


def list_damage_reports(
    db: Session,
    actor: Actor,
    *,
    status: Optional[DamageReportStatus] = None,
    severity: Optional[DamageSeverity] = None,
    damage_type: Optional[DamageType] = None,
    return_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[DamageReport]:
    stmt = select(DamageReportORM).join(ReturnORM, DamageReportORM.return_id == ReturnORM.id)
    if not permissions.is_staff(actor):
        stmt = stmt.where(ReturnORM.user_id == actor.user_id)
    if status:
        stmt = stmt.where(DamageReportORM.status == status)
    if severity:
        stmt = stmt.where(DamageReportORM.severity == severity)
    if damage_type:
        stmt = stmt.where(DamageReportORM.damage_type == damage_type)
    if return_id:
        stmt = stmt.where(DamageReportORM.return_id == return_id)
    stmt = stmt.order_by(DamageReportORM.created_at.desc()).limit(limit).offset(offset)
    return [damage_to_schema(d) for d in db.execute(stmt).scalars().all()]


def create_damage_report(
    db: Session,
    actor: Actor,
    return_id: str,
    body: DamageReportIn,
    *,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> DamageReportORM:
    now = now or crud.utcnow()
    ret = get_return_or_404(db, return_id)
    permissions.require_owner_or_staff(actor, ret.user_id, "report damage for this return")
    if not ret.damage_report and ret.condition_on_return in (ItemCondition.EXCELLENT, ItemCondition.GOOD):
        raise errors.ValidationError(
            "damage can only be reported for a return with damage notes or a condition below GOOD"
        )

    with crud.unit_of_work(db, commit=commit):
        report = DamageReportORM(
            id=crud.new_id(),
            return_id=ret.id,
            damage_type=body.damage_type,
            severity=body.severity,
            description=body.description,
            damage_images=list(body.damage_images),
            estimated_repair_cost=body.estimated_repair_cost,
            is_repairable=body.is_repairable,
            affects_usability=body.affects_usability,
            reported_by_id=actor.user_id,
            witness_details=body.witness_details,
            incident_date=crud.as_utc_naive(body.incident_date) if body.incident_date else ret.return_date,
            status=DamageReportStatus.REPORTED,
            created_at=now,
            updated_at=now,
        )
        db.add(report)
        db.flush()
        audit.record(
            db,
            actor.user_id,
            "DamageReport",
            report.id,
            audit.CreateDamageReportPayload(
                return_id=ret.id,
                damage_type=report.damage_type,
                severity=report.severity,
                description=report.description,
            ),
            now=now,
        )

    logger.info("damage reported id=%s return_id=%s severity=%s", report.id, ret.id, report.severity.value)
    return report


def update_damage_report(
    db: Session,
    actor: Actor,
    report_id: str,
    body: DamageReportUpdate,
    *,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> DamageReportORM:
    permissions.require_staff(actor, "review damage reports")
    now = now or crud.utcnow()

    with crud.unit_of_work(db, commit=commit):
        report = crud.touch_row(db, DamageReportORM, report_id, now)
        if report is None:
            raise errors.NotFoundError("damage report not found")

        previous = report.status
        new = body.status or previous
        if new != previous and new not in TRANSITIONS[previous]:
            raise errors.StateError(f"cannot move a damage report from {previous.value} to {new.value}")
        if new == previous and (body.repair_cost is not None or body.penalty_amount is not None):
            raise errors.ValidationError("repair_cost and penalty_amount are set when the report is approved")
        if body.resolution_notes and new != DamageReportStatus.RESOLVED:
            raise errors.ValidationError("resolution_notes are set when the report is resolved")

        if body.admin_notes is not None:
            report.admin_notes = body.admin_notes

        penalty = 0
        if new == DamageReportStatus.APPROVED and previous != new:
            report.approved_by_id = actor.user_id
            report.approved_at = now
            report.repair_cost = body.repair_cost
            report.penalty_amount = body.penalty_amount
            penalty = body.penalty_amount or 0
        elif new == DamageReportStatus.RESOLVED and previous != new:
            report.resolution_date = now
            report.resolution_notes = body.resolution_notes

        report.status = new
        report.updated_at = now

        if penalty > 0:
            reputation.apply_delta(
                db,
                report.return_record.user_id,
                -penalty,
                f"Damage penalty: {report.description}",
                acting_user_id=actor.user_id,
                now=now,
            )

        audit.record(
            db,
            actor.user_id,
            "DamageReport",
            report.id,
            audit.UpdateDamageReportPayload(
                previous_status=previous,
                new_status=new,
                admin_notes=body.admin_notes,
                repair_cost=report.repair_cost,
                penalty_amount=report.penalty_amount,
                resolution_notes=report.resolution_notes,
            ),
            now=now,
        )

    logger.info("damage report updated id=%s %s->%s by=%s", report.id, previous.value, new.value, actor.user_id)
    return report


def delete_damage_report(
    db: Session,
    actor: Actor,
    report_id: str,
    *,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> None:
    permissions.require_role(actor, Role.SUPER_ADMIN, "delete damage reports")
    now = now or crud.utcnow()

    with crud.unit_of_work(db, commit=commit):
        report = get_damage_report_or_404(db, report_id)
        payload = audit.DeleteDamageReportPayload(return_id=report.return_id, status=report.status)
        db.delete(report)
        audit.record(db, actor.user_id, "DamageReport", report_id, payload, now=now)

    logger.info("damage report deleted id=%s by=%s", report_id, actor.user_id)
