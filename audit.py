"""Append-only audit log.

Each action has its own payload model; the ``action`` literal is the tag
of the union, so a stored entry always parses back into the one schema it
was written with.  Entries are only ever inserted: nothing here updates or
deletes a row.
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter
from sqlalchemy import select
from sqlalchemy.orm import Session

from models import (
    CriterionScore,
    DamageReportStatus,
    DamageSeverity,
    DamageType,
    ItemCondition,
    ItemStatus,
    OverdueSeverity,
    ReservationStatus,
    ReturnStatus,
)
from orm import AuditLogORM


# ---------- Items ----------
class CreateItemPayload(BaseModel):
    action: Literal["CREATE_ITEM"] = "CREATE_ITEM"
    name: str
    category: str
    condition: ItemCondition
    status: ItemStatus

class UpdateItemPayload(BaseModel):
    action: Literal["UPDATE_ITEM"] = "UPDATE_ITEM"
    previous: dict[str, Any]
    updated: dict[str, Any]


# ---------- Reservations ----------
class CreateReservationPayload(BaseModel):
    action: Literal["CREATE_RESERVATION"] = "CREATE_RESERVATION"
    item_id: str
    start_date: datetime
    end_date: datetime
    purpose: Optional[str] = None

class ApproveReservationPayload(BaseModel):
    action: Literal["APPROVE_RESERVATION"] = "APPROVE_RESERVATION"
    previous_status: ReservationStatus
    new_status: ReservationStatus

class RejectReservationPayload(BaseModel):
    action: Literal["REJECT_RESERVATION"] = "REJECT_RESERVATION"
    previous_status: ReservationStatus
    reason: str

class ModifyReservationPayload(BaseModel):
    action: Literal["MODIFY_RESERVATION"] = "MODIFY_RESERVATION"
    reason: str
    previous_start_date: datetime
    new_start_date: datetime
    previous_end_date: datetime
    new_end_date: datetime
    previous_status: ReservationStatus
    new_status: ReservationStatus
    requires_reapproval: bool

class CancelReservationPayload(BaseModel):
    action: Literal["CANCEL_RESERVATION"] = "CANCEL_RESERVATION"
    reason: str
    original_status: ReservationStatus
    hours_before_start: float
    trust_score_impact: int
    penalty_reason: Optional[str] = None
    cancelled_by: Literal["owner", "staff"]

class DeleteReservationPayload(BaseModel):
    action: Literal["DELETE_RESERVATION"] = "DELETE_RESERVATION"
    item_id: str
    user_id: str
    status: ReservationStatus


# ---------- Pickup ----------
class GeneratePickupTokenPayload(BaseModel):
    action: Literal["GENERATE_PICKUP_TOKEN"] = "GENERATE_PICKUP_TOKEN"
    token: str
    expires_at: datetime
    generated_at: datetime

class ConfirmPickupPayload(BaseModel):
    action: Literal["CONFIRM_PICKUP"] = "CONFIRM_PICKUP"
    previous_status: ReservationStatus
    new_status: ReservationStatus
    confirmed_at: datetime
    is_staff_confirmation: bool
    notes: Optional[str] = None

class BulkConfirmPickupPayload(BaseModel):
    action: Literal["BULK_CONFIRM_PICKUP"] = "BULK_CONFIRM_PICKUP"
    previous_status: ReservationStatus
    new_status: ReservationStatus
    confirmed_at: datetime
    notes: Optional[str] = None

class MarkPickupOverduePayload(BaseModel):
    action: Literal["MARK_PICKUP_OVERDUE"] = "MARK_PICKUP_OVERDUE"
    days_overdue: int
    severity: OverdueSeverity
    penalty_points: int
    total_penalty_points: int
    scheduled_start: datetime


# ---------- Returns ----------
class CreateReturnPayload(BaseModel):
    action: Literal["CREATE_RETURN"] = "CREATE_RETURN"
    reservation_id: str
    condition_on_return: ItemCondition
    return_date: datetime
    is_late: bool
    has_damage_report: bool

class ApproveReturnPayload(BaseModel):
    action: Literal["APPROVE_RETURN"] = "APPROVE_RETURN"
    reservation_id: str
    previous_status: ReturnStatus
    new_status: ReturnStatus
    auto_approved: bool
    condition_on_return: ItemCondition
    item_status: ItemStatus
    penalty_points: int = 0
    staff_notes: Optional[str] = None

class RejectReturnPayload(BaseModel):
    action: Literal["REJECT_RETURN"] = "REJECT_RETURN"
    reservation_id: str
    rejection_reason: Optional[str] = None
    staff_notes: Optional[str] = None

class SubmitConditionAssessmentPayload(BaseModel):
    action: Literal["SUBMIT_CONDITION_ASSESSMENT"] = "SUBMIT_CONDITION_ASSESSMENT"
    return_id: str
    overall_score: float
    original_condition: ItemCondition
    determined_condition: ItemCondition
    final_condition: ItemCondition
    detailed_scores: list[CriterionScore]
    calculated_penalty: int
    recommended_penalty: int
    penalty_reason: Optional[str] = None
    notes: Optional[str] = None


# ---------- Damage ----------
class CreateDamageReportPayload(BaseModel):
    action: Literal["CREATE_DAMAGE_REPORT"] = "CREATE_DAMAGE_REPORT"
    return_id: str
    damage_type: DamageType
    severity: DamageSeverity
    description: str

class UpdateDamageReportPayload(BaseModel):
    action: Literal["UPDATE_DAMAGE_REPORT"] = "UPDATE_DAMAGE_REPORT"
    previous_status: DamageReportStatus
    new_status: DamageReportStatus
    admin_notes: Optional[str] = None
    repair_cost: Optional[float] = None
    penalty_amount: Optional[int] = None
    resolution_notes: Optional[str] = None

class DeleteDamageReportPayload(BaseModel):
    action: Literal["DELETE_DAMAGE_REPORT"] = "DELETE_DAMAGE_REPORT"
    return_id: str
    status: DamageReportStatus


# ---------- Reputation ----------
class ReputationChangePayload(BaseModel):
    action: Literal["REPUTATION_CHANGE"] = "REPUTATION_CHANGE"
    entry_id: int
    change: int
    reason: str
    previous_score: int
    new_score: int


AuditPayload = Annotated[
    Union[
        CreateItemPayload,
        UpdateItemPayload,
        CreateReservationPayload,
        ApproveReservationPayload,
        RejectReservationPayload,
        ModifyReservationPayload,
        CancelReservationPayload,
        DeleteReservationPayload,
        GeneratePickupTokenPayload,
        ConfirmPickupPayload,
        BulkConfirmPickupPayload,
        MarkPickupOverduePayload,
        CreateReturnPayload,
        ApproveReturnPayload,
        RejectReturnPayload,
        SubmitConditionAssessmentPayload,
        CreateDamageReportPayload,
        UpdateDamageReportPayload,
        DeleteDamageReportPayload,
        ReputationChangePayload,
    ],
    Field(discriminator="action"),
]

_payload_adapter = TypeAdapter(AuditPayload)


class AuditLogEntry(BaseModel):
    id: int
    action: str
    entity_type: str
    entity_id: str
    user_id: Optional[str] = None
    payload: AuditPayload
    created_at: datetime


def parse_payload(row: AuditLogORM):
    return _payload_adapter.validate_python(row.changes)


def to_entry(row: AuditLogORM) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        action=row.action,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        user_id=row.user_id,
        payload=parse_payload(row),
        created_at=row.created_at,
    )


def record(
    db: Session,
    user_id: Optional[str],
    entity_type: str,
    entity_id: str,
    payload: BaseModel,
    *,
    now: datetime,
) -> AuditLogORM:
    """Append an entry inside the caller's transaction (flushed, not committed)."""
    row = AuditLogORM(
        action=payload.action,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        changes=payload.model_dump(mode="json"),
        created_at=now,
    )
    db.add(row)
    db.flush()
    return row


def latest(db: Session, *, action: str, entity_type: str, entity_id: str) -> Optional[AuditLogORM]:
    stmt = (
        select(AuditLogORM)
        .where(
            AuditLogORM.action == action,
            AuditLogORM.entity_type == entity_type,
            AuditLogORM.entity_id == entity_id,
        )
        .order_by(AuditLogORM.id.desc())
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def list_entries(
    db: Session,
    *,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    entity_ids: Optional[list[str]] = None,
    action: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: int = 500,
    offset: int = 0,
) -> list[AuditLogORM]:
    """Oldest first, the order the changes happened in."""
    stmt = select(AuditLogORM)
    if entity_type:
        stmt = stmt.where(AuditLogORM.entity_type == entity_type)
    if entity_id:
        stmt = stmt.where(AuditLogORM.entity_id == entity_id)
    if entity_ids is not None:
        stmt = stmt.where(AuditLogORM.entity_id.in_(entity_ids))
    if action:
        stmt = stmt.where(AuditLogORM.action == action)
    if user_id:
        stmt = stmt.where(AuditLogORM.user_id == user_id)
    stmt = stmt.order_by(AuditLogORM.id.asc()).limit(limit).offset(offset)
    return list(db.execute(stmt).scalars().all())
