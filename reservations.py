"""Reservation lifecycle.

PENDING -> APPROVED -> ACTIVE -> COMPLETED, with PENDING -> REJECTED and
PENDING/APPROVED -> CANCELLED as the terminal side exits.  Pickup
(APPROVED -> ACTIVE) lives in ``pickup.py`` and completion in
``returns.py``; every transition, wherever it lives, runs in one
``unit_of_work`` that also writes its audit entry and resyncs the item.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

import audit
import availability
import config
import crud
import errors
import permissions
import reputation
from models import (
    Actor,
    BulkReservationActionIn,
    BulkResult,
    BulkResultRow,
    CancelIn,
    CancelResult,
    ItemStatus,
    ModifyResult,
    RejectIn,
    Reservation,
    ReservationIn,
    ReservationModify,
    ReservationStatus,
)
from orm import ReservationORM

logger = logging.getLogger(__name__)

MODIFIABLE_STATUSES = (ReservationStatus.PENDING, ReservationStatus.APPROVED)
CANCELLABLE_STATUSES = (ReservationStatus.PENDING, ReservationStatus.APPROVED)


def reservation_to_schema(r: ReservationORM) -> Reservation:
    return Reservation(
        id=r.id,
        item_id=r.item_id,
        user_id=r.user_id,
        start_date=r.start_date,
        end_date=r.end_date,
        actual_start_date=r.actual_start_date,
        actual_end_date=r.actual_end_date,
        status=r.status,
        purpose=r.purpose,
        notes=r.notes,
        approved_by_id=r.approved_by_id,
        approved_at=r.approved_at,
        rejection_reason=r.rejection_reason,
        cancellation_reason=r.cancellation_reason,
        cancelled_at=r.cancelled_at,
        pickup_confirmed=r.pickup_confirmed,
        pickup_confirmed_at=r.pickup_confirmed_at,
        overdue_penalty_points=r.overdue_penalty_points,
        created_at=r.created_at,
        updated_at=r.updated_at,
    )


def _validate_range(start_date: datetime, end_date: datetime, now: datetime) -> tuple[datetime, datetime]:
    start_date = crud.as_utc_naive(start_date)
    end_date = crud.as_utc_naive(end_date)
    if start_date >= end_date:
        raise errors.ValidationError("end_date must be after start_date")
    if start_date < now:
        raise errors.ValidationError("start_date cannot be in the past")
    return start_date, end_date


def _raise_if_conflicting(
    db: Session,
    item_id: str,
    start_date: datetime,
    end_date: datetime,
    exclude_reservation_id: Optional[str] = None,
) -> None:
    conflicts = availability.find_conflicts(db, item_id, start_date, end_date, exclude_reservation_id)
    if conflicts:
        raise errors.ConflictError(
            "item is not available for the selected dates",
            extra=availability.conflicts_payload(conflicts),
        )


def _require_status(reservation: ReservationORM, allowed, verb: str) -> None:
    if reservation.status not in allowed:
        raise errors.StateError(f"cannot {verb} a reservation with status {reservation.status.value}")


# ---------- Read ----------
def get_reservation_or_404(db: Session, reservation_id: str) -> ReservationORM:
    reservation = db.get(ReservationORM, reservation_id)
    if reservation is None:
        raise errors.NotFoundError("reservation not found")
    return reservation


def get_reservation(db: Session, actor: Actor, reservation_id: str) -> ReservationORM:
    reservation = get_reservation_or_404(db, reservation_id)
    permissions.require_owner_or_staff(actor, reservation.user_id, "view this reservation")
    return reservation


def list_reservations(
    db: Session,
    actor: Actor,
    *,
    item_id: Optional[str] = None,
    user_id: Optional[str] = None,
    status: Optional[ReservationStatus] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Reservation]:
    if not permissions.is_staff(actor):
        user_id = actor.user_id

    stmt = select(ReservationORM)
    if item_id:
        stmt = stmt.where(ReservationORM.item_id == item_id)
    if user_id:
        stmt = stmt.where(ReservationORM.user_id == user_id)
    if status:
        stmt = stmt.where(ReservationORM.status == status)
    stmt = stmt.order_by(ReservationORM.start_date.asc(), ReservationORM.id.asc()).limit(limit).offset(offset)
    return [reservation_to_schema(r) for r in db.execute(stmt).scalars().all()]


def history(db: Session, actor: Actor, reservation_id: str) -> list[audit.AuditLogEntry]:
    get_reservation(db, actor, reservation_id)
    rows = audit.list_entries(db, entity_type="Reservation", entity_id=reservation_id)
    return [audit.to_entry(r) for r in rows]


# ---------- Create ----------
def create_reservation(
    db: Session,
    actor: Actor,
    body: ReservationIn,
    *,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> ReservationORM:
    now = now or crud.utcnow()
    start_date, end_date = _validate_range(body.start_date, body.end_date, now)

    with crud.unit_of_work(db, commit=commit):
        item = crud.lock_item(db, body.item_id, now)
        if item.status == ItemStatus.RETIRED:
            raise errors.ValidationError("item is retired and cannot be reserved")
        _raise_if_conflicting(db, item.id, start_date, end_date)

        reservation = ReservationORM(
            id=crud.new_id(),
            item_id=item.id,
            user_id=actor.user_id,
            start_date=start_date,
            end_date=end_date,
            status=ReservationStatus.PENDING,
            purpose=body.purpose,
            notes=body.notes,
            pickup_confirmed=False,
            overdue_penalty_points=0,
            created_at=now,
            updated_at=now,
        )
        db.add(reservation)
        db.flush()
        audit.record(
            db,
            actor.user_id,
            "Reservation",
            reservation.id,
            audit.CreateReservationPayload(
                item_id=item.id,
                start_date=start_date,
                end_date=end_date,
                purpose=body.purpose,
            ),
            now=now,
        )

    logger.info("reservation created id=%s item_id=%s user_id=%s", reservation.id, item.id, actor.user_id)
    return reservation


# ---------- Staff decisions ----------
def approve_reservation(
    db: Session,
    actor: Actor,
    reservation_id: str,
    *,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> ReservationORM:
    permissions.require_staff(actor, "approve reservations")
    now = now or crud.utcnow()

    with crud.unit_of_work(db, commit=commit):
        reservation = get_reservation_or_404(db, reservation_id)
        item = crud.lock_item(db, reservation.item_id, now)
        reservation = crud.lock_reservation(db, reservation_id, now)
        _require_status(reservation, (ReservationStatus.PENDING,), "approve")

        previous = reservation.status
        reservation.status = ReservationStatus.APPROVED
        reservation.approved_by_id = actor.user_id
        reservation.approved_at = now
        reservation.updated_at = now
        crud.sync_item_status(db, item, now)

        audit.record(
            db,
            actor.user_id,
            "Reservation",
            reservation.id,
            audit.ApproveReservationPayload(previous_status=previous, new_status=reservation.status),
            now=now,
        )

    logger.info("reservation approved id=%s by=%s", reservation.id, actor.user_id)
    return reservation


def reject_reservation(
    db: Session,
    actor: Actor,
    reservation_id: str,
    body: RejectIn,
    *,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> ReservationORM:
    permissions.require_staff(actor, "reject reservations")
    if not body.reason.strip():
        raise errors.ValidationError("a rejection reason is required")
    now = now or crud.utcnow()

    with crud.unit_of_work(db, commit=commit):
        reservation = get_reservation_or_404(db, reservation_id)
        item = crud.lock_item(db, reservation.item_id, now)
        reservation = crud.lock_reservation(db, reservation_id, now)
        _require_status(reservation, (ReservationStatus.PENDING,), "reject")

        previous = reservation.status
        reservation.status = ReservationStatus.REJECTED
        reservation.rejection_reason = body.reason
        reservation.updated_at = now
        crud.sync_item_status(db, item, now)

        audit.record(
            db,
            actor.user_id,
            "Reservation",
            reservation.id,
            audit.RejectReservationPayload(previous_status=previous, reason=body.reason),
            now=now,
        )

    logger.info("reservation rejected id=%s by=%s", reservation.id, actor.user_id)
    return reservation


# ---------- Owner / staff changes ----------
def is_significant_change(
    old_start: datetime,
    old_end: datetime,
    new_start: datetime,
    new_end: datetime,
) -> bool:
    limit = timedelta(hours=config.SIGNIFICANT_CHANGE_HOURS)
    return abs(new_start - old_start) > limit or abs(new_end - old_end) > limit


def modify_reservation(
    db: Session,
    actor: Actor,
    reservation_id: str,
    body: ReservationModify,
    *,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> ModifyResult:
    now = now or crud.utcnow()
    existing = get_reservation_or_404(db, reservation_id)
    permissions.require_owner_or_staff(actor, existing.user_id, "modify this reservation")
    if not body.reason.strip():
        raise errors.ValidationError("a reason for the modification is required")
    start_date, end_date = _validate_range(body.start_date, body.end_date, now)

    with crud.unit_of_work(db, commit=commit):
        item = crud.lock_item(db, existing.item_id, now)
        reservation = crud.lock_reservation(db, reservation_id, now)
        _require_status(reservation, MODIFIABLE_STATUSES, "modify")
        _raise_if_conflicting(db, item.id, start_date, end_date, exclude_reservation_id=reservation.id)

        previous_status = reservation.status
        previous_start, previous_end = reservation.start_date, reservation.end_date
        significant = is_significant_change(previous_start, previous_end, start_date, end_date)
        requires_reapproval = (
            previous_status == ReservationStatus.APPROVED
            and significant
            and permissions.is_owner(actor, reservation.user_id)
            and not permissions.is_staff(actor)
        )

        reservation.start_date = start_date
        reservation.end_date = end_date
        if body.purpose:
            reservation.purpose = body.purpose
        if body.notes:
            reservation.notes = body.notes
        if requires_reapproval:
            reservation.status = ReservationStatus.PENDING
            reservation.approved_by_id = None
            reservation.approved_at = None
        reservation.updated_at = now
        crud.sync_item_status(db, item, now)

        audit.record(
            db,
            actor.user_id,
            "Reservation",
            reservation.id,
            audit.ModifyReservationPayload(
                reason=body.reason,
                previous_start_date=previous_start,
                new_start_date=start_date,
                previous_end_date=previous_end,
                new_end_date=end_date,
                previous_status=previous_status,
                new_status=reservation.status,
                requires_reapproval=requires_reapproval,
            ),
            now=now,
        )

    logger.info(
        "reservation modified id=%s by=%s requires_reapproval=%s", reservation.id, actor.user_id, requires_reapproval
    )
    if requires_reapproval:
        message = "reservation modified; the change needs approval again"
    else:
        message = "reservation modified"
    return ModifyResult(
        reservation=reservation_to_schema(reservation),
        requires_reapproval=requires_reapproval,
        message=message,
    )


def cancellation_penalty(start_date: datetime, now: datetime) -> tuple[int, Optional[str], float]:
    """Points to deduct for an owner cancelling at ``now``, with the reason and hours left."""
    hours_before_start = (start_date - now).total_seconds() / 3600
    if hours_before_start <= 0:
        return config.VERY_LATE_CANCEL_PENALTY, "Cancelled after the reservation start time", hours_before_start
    if hours_before_start < config.LATE_CANCEL_WINDOW_HOURS:
        return (
            config.LATE_CANCEL_PENALTY,
            f"Cancelled less than {config.LATE_CANCEL_WINDOW_HOURS} hours before the start time",
            hours_before_start,
        )
    return 0, None, hours_before_start


def cancel_reservation(
    db: Session,
    actor: Actor,
    reservation_id: str,
    body: CancelIn,
    *,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> CancelResult:
    now = now or crud.utcnow()
    existing = get_reservation_or_404(db, reservation_id)
    permissions.require_owner_or_staff(actor, existing.user_id, "cancel this reservation")
    if not body.reason.strip():
        raise errors.ValidationError("a cancellation reason is required")

    with crud.unit_of_work(db, commit=commit):
        item = crud.lock_item(db, existing.item_id, now)
        reservation = crud.lock_reservation(db, reservation_id, now)
        _require_status(reservation, CANCELLABLE_STATUSES, "cancel")

        by_staff = permissions.is_staff(actor)
        penalty, penalty_reason, hours_before_start = cancellation_penalty(reservation.start_date, now)
        if by_staff:
            penalty, penalty_reason = 0, None

        previous_status = reservation.status
        reservation.status = ReservationStatus.CANCELLED
        reservation.cancellation_reason = body.reason
        reservation.cancelled_at = now
        if body.notes:
            reservation.notes = body.notes
        reservation.updated_at = now
        crud.sync_item_status(db, item, now)

        if penalty:
            reputation.apply_delta(
                db,
                reservation.user_id,
                -penalty,
                f"Late cancellation: {penalty_reason}",
                acting_user_id=actor.user_id,
                now=now,
            )

        audit.record(
            db,
            actor.user_id,
            "Reservation",
            reservation.id,
            audit.CancelReservationPayload(
                reason=body.reason,
                original_status=previous_status,
                hours_before_start=round(hours_before_start, 2),
                trust_score_impact=-penalty,
                penalty_reason=penalty_reason,
                cancelled_by="staff" if by_staff else "owner",
            ),
            now=now,
        )

    logger.info("reservation cancelled id=%s by=%s penalty=%s", reservation.id, actor.user_id, penalty)
    if penalty:
        message = f"reservation cancelled; {penalty} trust points deducted"
    else:
        message = "reservation cancelled"
    return CancelResult(
        reservation=reservation_to_schema(reservation),
        trust_score_impact=-penalty,
        penalty_reason=penalty_reason,
        message=message,
    )


def delete_reservation(
    db: Session,
    actor: Actor,
    reservation_id: str,
    *,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> None:
    now = now or crud.utcnow()
    existing = get_reservation_or_404(db, reservation_id)
    if not (permissions.is_owner(actor, existing.user_id) or permissions.is_elevated(actor)):
        raise permissions.deny(actor, "delete this reservation")

    with crud.unit_of_work(db, commit=commit):
        item = crud.lock_item(db, existing.item_id, now)
        reservation = crud.lock_reservation(db, reservation_id, now)
        if reservation.status == ReservationStatus.ACTIVE:
            raise errors.StateError("cannot delete an active reservation; return the item first")

        payload = audit.DeleteReservationPayload(
            item_id=reservation.item_id,
            user_id=reservation.user_id,
            status=reservation.status,
        )
        db.delete(reservation)
        crud.sync_item_status(db, item, now)
        audit.record(db, actor.user_id, "Reservation", reservation_id, payload, now=now)

    logger.info("reservation deleted id=%s by=%s", reservation_id, actor.user_id)


# ---------- Bulk staff actions ----------
BULK_REJECT_REASON = "Bulk rejection by staff"
BULK_CANCEL_REASON = "Bulk cancellation by staff"


def bulk_action(
    db: Session,
    actor: Actor,
    body: BulkReservationActionIn,
    *,
    now: Optional[datetime] = None,
) -> BulkResult:
    """Apply one staff decision to several reservations.

    Every reservation runs through the single-record transition in its own
    transaction, so a failure is reported in its result row and the rest
    carry on.  Deleting in bulk needs an elevated role.
    """
    permissions.require_staff(actor, f"{body.action} reservations in bulk")
    if body.action == "delete" and not permissions.is_elevated(actor):
        raise permissions.deny(actor, "delete reservations in bulk")
    now = now or crud.utcnow()
    reason = (body.reason or "").strip()

    results: list[BulkResultRow] = []
    for reservation_id in body.reservation_ids:
        try:
            if body.action == "approve":
                approve_reservation(db, actor, reservation_id, now=now)
            elif body.action == "reject":
                reject_reservation(db, actor, reservation_id, RejectIn(reason=reason or BULK_REJECT_REASON), now=now)
            elif body.action == "cancel":
                cancel_reservation(db, actor, reservation_id, CancelIn(reason=reason or BULK_CANCEL_REASON), now=now)
            else:
                delete_reservation(db, actor, reservation_id, now=now)
        except errors.LendingError as exc:
            logger.warning(
                "bulk %s failed reservation_id=%s error=%s", body.action, reservation_id, exc.message
            )
            results.append(BulkResultRow(id=reservation_id, success=False, error=exc.message))
        else:
            results.append(BulkResultRow(id=reservation_id, success=True))

    result = crud.bulk_result(results)
    logger.info(
        "bulk %s done total=%s successful=%s by=%s",
        body.action,
        result.summary.total,
        result.summary.successful,
        actor.user_id,
    )
    return result
