"""Returns: initiation, auto-approval and staff review.

A return either resolves on the spot (GOOD condition, on time, nothing
reported) or waits as PENDING for staff.  Approval, immediate or
reviewed, always goes through :func:`_complete`, which closes the
reservation and puts the item back in circulation in the same
transaction.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

import audit
import config
import crud
import errors
import overdue
import permissions
import reputation
from models import (
    CONDITION_SCORES,
    Actor,
    BulkResult,
    BulkResultRow,
    BulkReturnReviewIn,
    ItemCondition,
    ItemStatus,
    ReservationStatus,
    Return,
    ReturnIn,
    ReturnReviewIn,
    ReturnReviewResult,
    ReturnStatus,
    ReturnSubmission,
)
from orm import ItemORM, ReservationORM, ReturnORM
from reservations import get_reservation_or_404

logger = logging.getLogger(__name__)


def return_to_schema(r: ReturnORM) -> Return:
    return Return.model_validate(r)


def get_return_or_404(db: Session, return_id: str) -> ReturnORM:
    ret = db.get(ReturnORM, return_id)
    if ret is None:
        raise errors.NotFoundError("return not found")
    return ret


def get_return(db: Session, actor: Actor, return_id: str) -> ReturnORM:
    ret = get_return_or_404(db, return_id)
    permissions.require_owner_or_staff(actor, ret.user_id, "view this return")
    return ret


def lock_return(db: Session, return_id: str, now: datetime) -> ReturnORM:
    ret = crud.touch_row(db, ReturnORM, return_id, now)
    if ret is None:
        raise errors.NotFoundError("return not found")
    return ret


def list_returns(
    db: Session,
    actor: Actor,
    *,
    status: Optional[ReturnStatus] = None,
    reservation_id: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Return]:
    if not permissions.is_staff(actor):
        user_id = actor.user_id

    stmt = select(ReturnORM)
    if status:
        stmt = stmt.where(ReturnORM.status == status)
    if reservation_id:
        stmt = stmt.where(ReturnORM.reservation_id == reservation_id)
    if user_id:
        stmt = stmt.where(ReturnORM.user_id == user_id)
    stmt = stmt.order_by(ReturnORM.created_at.desc()).limit(limit).offset(offset)
    return [return_to_schema(r) for r in db.execute(stmt).scalars().all()]


# ---------- Penalty rules ----------
def days_late(return_date: datetime, end_date: datetime) -> int:
    if return_date <= end_date:
        return 0
    return math.ceil((return_date - end_date).total_seconds() / 86400)


def condition_drop(original: ItemCondition, returned: ItemCondition) -> int:
    return max(0, CONDITION_SCORES[original] - CONDITION_SCORES[returned])


def condition_penalty(original: ItemCondition, returned: ItemCondition) -> int:
    return condition_drop(original, returned) * config.CONDITION_PENALTY_PER_STEP


def recommended_penalty(
    original: ItemCondition,
    returned: ItemCondition,
    return_date: datetime,
    end_date: datetime,
) -> tuple[int, Optional[str]]:
    points = 0
    reasons = []
    late = days_late(return_date, end_date)
    if late:
        points += overdue.capped_penalty(late)
        reasons.append(f"Overdue return ({late} days late).")
    drop = condition_penalty(original, returned)
    if drop:
        points += drop
        reasons.append(f"Condition degraded from {original.value} to {returned.value}.")
    points = min(points, config.MAX_RETURN_PENALTY)
    return points, (" ".join(reasons) or None)


def _has_open_return(db: Session, reservation_id: str) -> bool:
    stmt = select(ReturnORM.id).where(
        ReturnORM.reservation_id == reservation_id,
        ReturnORM.status != ReturnStatus.REJECTED,
    )
    return db.execute(stmt).first() is not None


def _complete(
    db: Session,
    ret: ReturnORM,
    reservation: ReservationORM,
    item: ItemORM,
    *,
    final_status: ReturnStatus,
    condition: ItemCondition,
    approver_id: str,
    now: datetime,
) -> ItemStatus:
    ret.status = final_status
    ret.condition_on_return = condition
    ret.approved_by_id = approver_id
    ret.approved_at = now
    ret.updated_at = now

    reservation.status = ReservationStatus.COMPLETED
    reservation.actual_end_date = ret.return_date
    reservation.updated_at = now

    item.condition = condition
    if final_status == ReturnStatus.DAMAGED:
        item.status = ItemStatus.MAINTENANCE
    elif item.status == ItemStatus.BORROWED:
        # sync below decides between AVAILABLE and RESERVED
        item.status = ItemStatus.AVAILABLE
    item.updated_at = now
    return crud.sync_item_status(db, item, now)


# ---------- Initiate ----------
def initiate_return(
    db: Session,
    actor: Actor,
    reservation_id: str,
    body: ReturnIn,
    *,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> ReturnSubmission:
    now = now or crud.utcnow()
    existing = get_reservation_or_404(db, reservation_id)
    permissions.require_owner_or_staff(actor, existing.user_id, "return items for this reservation")
    if body.item_id and body.item_id != existing.item_id:
        raise errors.ValidationError("item_id does not match the reservation")
    return_date = crud.as_utc_naive(body.return_date) if body.return_date else now
    if return_date > now:
        raise errors.ValidationError("return_date cannot be in the future")

    with crud.unit_of_work(db, commit=commit):
        item = crud.lock_item(db, existing.item_id, now)
        reservation = crud.lock_reservation(db, reservation_id, now)
        if reservation.status != ReservationStatus.ACTIVE:
            raise errors.StateError(f"cannot return items for a reservation with status {reservation.status.value}")
        if _has_open_return(db, reservation.id):
            raise errors.ConflictError("a return is already in progress for this reservation")

        condition = body.condition_on_return
        on_time = return_date <= reservation.end_date
        auto_approved = condition == ItemCondition.GOOD and on_time and not body.damage_report

        ret = ReturnORM(
            id=crud.new_id(),
            reservation_id=reservation.id,
            item_id=item.id,
            user_id=reservation.user_id,
            submitted_by_id=actor.user_id,
            return_date=return_date,
            condition_on_return=condition,
            status=ReturnStatus.PENDING,
            damage_report=body.damage_report,
            damage_images=list(body.damage_images),
            penalty_applied=False,
            notes=body.notes,
            created_at=now,
            updated_at=now,
        )
        db.add(ret)
        db.flush()

        if auto_approved:
            item_status = _complete(
                db,
                ret,
                reservation,
                item,
                final_status=ReturnStatus.APPROVED,
                condition=condition,
                approver_id=actor.user_id,
                now=now,
            )
            audit.record(
                db,
                actor.user_id,
                "Return",
                ret.id,
                audit.ApproveReturnPayload(
                    reservation_id=reservation.id,
                    previous_status=ReturnStatus.PENDING,
                    new_status=ret.status,
                    auto_approved=True,
                    condition_on_return=condition,
                    item_status=item_status,
                ),
                now=now,
            )
        else:
            points, reason = recommended_penalty(item.condition, condition, return_date, reservation.end_date)
            if points:
                ret.penalty_amount = points
                ret.penalty_reason = reason
            audit.record(
                db,
                actor.user_id,
                "Return",
                ret.id,
                audit.CreateReturnPayload(
                    reservation_id=reservation.id,
                    condition_on_return=condition,
                    return_date=return_date,
                    is_late=not on_time,
                    has_damage_report=bool(body.damage_report),
                ),
                now=now,
            )

    logger.info(
        "return submitted id=%s reservation_id=%s auto_approved=%s", ret.id, reservation.id, auto_approved
    )
    if auto_approved:
        message = "return approved; the item is available again"
    else:
        message = "return submitted for staff review"
    return ReturnSubmission(return_record=return_to_schema(ret), auto_approved=auto_approved, message=message)


# ---------- Staff review ----------
def review_return(
    db: Session,
    actor: Actor,
    return_id: str,
    body: ReturnReviewIn,
    *,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> ReturnReviewResult:
    permissions.require_staff(actor, "review returns")
    now = now or crud.utcnow()
    existing = get_return_or_404(db, return_id)

    with crud.unit_of_work(db, commit=commit):
        item = crud.lock_item(db, existing.item_id, now)
        reservation = crud.lock_reservation(db, existing.reservation_id, now)
        ret = lock_return(db, return_id, now)
        if ret.status != ReturnStatus.PENDING:
            raise errors.StateError(f"return already processed with status {ret.status.value}")

        if body.staff_notes:
            ret.notes = body.staff_notes

        if not body.approved:
            ret.status = ReturnStatus.REJECTED
            ret.rejection_reason = body.rejection_reason
            ret.updated_at = now
            audit.record(
                db,
                actor.user_id,
                "Return",
                ret.id,
                audit.RejectReturnPayload(
                    reservation_id=reservation.id,
                    rejection_reason=body.rejection_reason,
                    staff_notes=body.staff_notes,
                ),
                now=now,
            )
            logger.info("return rejected id=%s by=%s", ret.id, actor.user_id)
            return ReturnReviewResult(
                return_record=return_to_schema(ret),
                reservation_status=reservation.status,
                item_status=item.status,
                penalty_applied=0,
            )

        if reservation.status != ReservationStatus.ACTIVE:
            raise errors.StateError(f"cannot complete a reservation with status {reservation.status.value}")

        condition = body.condition_on_return or ret.condition_on_return
        if body.damage_report:
            ret.damage_report = body.damage_report

        if body.penalty_points is not None:
            penalty = body.penalty_points
            penalty_reason = body.penalty_reason or ret.penalty_reason or "Return penalty set by staff"
        elif body.condition_on_return is not None and body.condition_on_return != ret.condition_on_return:
            penalty, penalty_reason = recommended_penalty(item.condition, condition, ret.return_date, reservation.end_date)
        else:
            penalty, penalty_reason = ret.penalty_amount or 0, ret.penalty_reason

        damaged = condition == ItemCondition.DAMAGED or bool(ret.damage_report)
        final_status = ReturnStatus.DAMAGED if damaged else ReturnStatus.APPROVED
        previous_status = ret.status
        item_status = _complete(
            db,
            ret,
            reservation,
            item,
            final_status=final_status,
            condition=condition,
            approver_id=actor.user_id,
            now=now,
        )

        if penalty > 0:
            ret.penalty_applied = True
            ret.penalty_amount = penalty
            ret.penalty_reason = penalty_reason
            reputation.apply_delta(
                db,
                ret.user_id,
                -penalty,
                f"Return penalty: {penalty_reason}",
                acting_user_id=actor.user_id,
                now=now,
            )
        else:
            ret.penalty_amount = None

        audit.record(
            db,
            actor.user_id,
            "Return",
            ret.id,
            audit.ApproveReturnPayload(
                reservation_id=reservation.id,
                previous_status=previous_status,
                new_status=ret.status,
                auto_approved=False,
                condition_on_return=condition,
                item_status=item_status,
                penalty_points=max(penalty, 0),
                staff_notes=body.staff_notes,
            ),
            now=now,
        )

    logger.info("return approved id=%s status=%s penalty=%s by=%s", ret.id, ret.status.value, penalty, actor.user_id)
    return ReturnReviewResult(
        return_record=return_to_schema(ret),
        reservation_status=reservation.status,
        item_status=item.status,
        penalty_applied=max(penalty, 0),
    )


def bulk_review(
    db: Session,
    actor: Actor,
    body: BulkReturnReviewIn,
    *,
    now: Optional[datetime] = None,
) -> BulkResult:
    """Approve or reject several pending returns, one transaction each."""
    permissions.require_staff(actor, "review returns in bulk")
    if not body.approved and not (body.rejection_reason or "").strip():
        raise errors.ValidationError("a rejection reason is required to reject returns in bulk")
    now = now or crud.utcnow()
    review = ReturnReviewIn(
        approved=body.approved,
        rejection_reason=body.rejection_reason,
        staff_notes=body.staff_notes,
    )

    results: list[BulkResultRow] = []
    for return_id in body.return_ids:
        try:
            review_return(db, actor, return_id, review, now=now)
        except errors.LendingError as exc:
            logger.warning("bulk return review failed return_id=%s error=%s", return_id, exc.message)
            results.append(BulkResultRow(id=return_id, success=False, error=exc.message))
        else:
            results.append(BulkResultRow(id=return_id, success=True))

    result = crud.bulk_result(results)
    logger.info(
        "bulk return review done approved=%s total=%s successful=%s by=%s",
        body.approved,
        result.summary.total,
        result.summary.successful,
        actor.user_id,
    )
    return result
