"""Overdue scanning.

``scan_overdue`` is the batch job: reservations whose start is past the
threshold and that were never picked up get a severity tier and a
reputation penalty.  A reservation remembers the points it has already
been charged, so running the scan again only charges the growth up to the
cap.  ``late_returns`` is the read-only report of loans past their end
date.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

import audit
import config
import crud
import errors
import permissions
import reputation
from models import (
    Actor,
    LateReturn,
    NotificationIntent,
    NotificationType,
    OverdueScanIn,
    OverdueScanResult,
    OverdueScanRow,
    OverdueScanSummary,
    OverdueSeverity,
    ReservationStatus,
    ReturnStatus,
)
from orm import ReservationORM, ReturnORM

logger = logging.getLogger(__name__)

NOTIFICATION_FOR_SEVERITY = {
    OverdueSeverity.MODERATE: NotificationType.REMINDER,
    OverdueSeverity.HIGH: NotificationType.WARNING,
    OverdueSeverity.CRITICAL: NotificationType.FINAL_NOTICE,
}


def severity_for_days(days: int) -> OverdueSeverity:
    if days <= config.OVERDUE_MODERATE_MAX_DAYS:
        return OverdueSeverity.MODERATE
    if days <= config.OVERDUE_HIGH_MAX_DAYS:
        return OverdueSeverity.HIGH
    return OverdueSeverity.CRITICAL


def capped_penalty(days: int) -> int:
    return min(max(days, 0) * config.OVERDUE_POINTS_PER_DAY, config.OVERDUE_PENALTY_CAP)


def _scan_statuses(body: OverdueScanIn) -> list[ReservationStatus]:
    statuses = []
    if body.include_approved:
        statuses.append(ReservationStatus.APPROVED)
    if body.include_active:
        statuses.append(ReservationStatus.ACTIVE)
    return statuses


def find_overdue_ids(db: Session, body: OverdueScanIn, now: datetime) -> list[str]:
    statuses = _scan_statuses(body)
    if not statuses:
        return []
    cutoff = now - timedelta(days=body.days_overdue)
    stmt = (
        select(ReservationORM.id)
        .where(
            ReservationORM.status.in_(statuses),
            ReservationORM.start_date < cutoff,
            ReservationORM.pickup_confirmed.is_(False),
        )
        .order_by(ReservationORM.start_date.asc())
    )
    return list(db.execute(stmt).scalars().all())


def _mark_one(
    db: Session,
    actor: Actor,
    reservation_id: str,
    body: OverdueScanIn,
    now: datetime,
) -> tuple[OverdueScanRow, NotificationIntent]:
    with crud.unit_of_work(db):
        reservation = crud.lock_reservation(db, reservation_id, now)
        # re-check under the lock; a pickup may have landed since the select
        if reservation.status not in _scan_statuses(body) or reservation.pickup_confirmed:
            raise errors.StateError("reservation is no longer awaiting pickup")

        days = math.floor((now - reservation.start_date).total_seconds() / 86400)
        severity = severity_for_days(days)
        target = capped_penalty(days)
        charge = max(0, target - reservation.overdue_penalty_points)

        if charge > 0:
            reputation.apply_delta(
                db,
                reservation.user_id,
                -charge,
                f"Pickup overdue by {days} days",
                acting_user_id=actor.user_id,
                now=now,
            )
            reservation.overdue_penalty_points += charge

        audit.record(
            db,
            actor.user_id,
            "Reservation",
            reservation.id,
            audit.MarkPickupOverduePayload(
                days_overdue=days,
                severity=severity,
                penalty_points=charge,
                total_penalty_points=reservation.overdue_penalty_points,
                scheduled_start=reservation.start_date,
            ),
            now=now,
        )
        user_id = reservation.user_id

    row = OverdueScanRow(
        id=reservation_id,
        success=True,
        days_overdue=days,
        severity=severity,
        penalty_points=charge,
    )
    intent = NotificationIntent(
        user_id=user_id,
        reservation_id=reservation_id,
        type=NOTIFICATION_FOR_SEVERITY[severity],
        days_overdue=days,
    )
    return row, intent


def scan_overdue(
    db: Session,
    actor: Actor,
    body: OverdueScanIn,
    *,
    now: Optional[datetime] = None,
) -> OverdueScanResult:
    permissions.require_staff(actor, "run the overdue scan")
    now = now or crud.utcnow()

    results: list[OverdueScanRow] = []
    notifications: list[NotificationIntent] = []
    for reservation_id in find_overdue_ids(db, body, now):
        try:
            row, intent = _mark_one(db, actor, reservation_id, body, now)
        except errors.LendingError as exc:
            logger.warning("overdue scan failed reservation_id=%s error=%s", reservation_id, exc.message)
            results.append(OverdueScanRow(id=reservation_id, success=False, error=exc.message))
            continue
        results.append(row)
        notifications.append(intent)

    successful = [r for r in results if r.success]
    summary = OverdueScanSummary(
        total=len(results),
        successful=len(successful),
        failed=len(results) - len(successful),
        penalized=sum(1 for r in successful if r.penalty_points > 0),
        total_penalty_points=sum(r.penalty_points for r in successful),
    )
    logger.info(
        "overdue scan done total=%s successful=%s penalized=%s points=%s",
        summary.total,
        summary.successful,
        summary.penalized,
        summary.total_penalty_points,
    )
    return OverdueScanResult(summary=summary, results=results, notifications=notifications)


def late_returns(
    db: Session,
    actor: Actor,
    *,
    severity: Optional[OverdueSeverity] = None,
    now: Optional[datetime] = None,
) -> list[LateReturn]:
    """ACTIVE loans past their end date with no return in progress."""
    permissions.require_staff(actor, "view late returns")
    now = now or crud.utcnow()

    open_return = (
        select(ReturnORM.id)
        .where(
            ReturnORM.reservation_id == ReservationORM.id,
            ReturnORM.status != ReturnStatus.REJECTED,
        )
        .exists()
    )
    stmt = (
        select(ReservationORM)
        .where(
            ReservationORM.status == ReservationStatus.ACTIVE,
            ReservationORM.end_date < now,
            ~open_return,
        )
        .order_by(ReservationORM.end_date.asc())
    )

    out = []
    for r in db.execute(stmt).scalars().all():
        days = math.ceil((now - r.end_date).total_seconds() / 86400)
        tier = severity_for_days(days)
        if severity and tier != severity:
            continue
        out.append(
            LateReturn(
                reservation_id=r.id,
                item_id=r.item_id,
                user_id=r.user_id,
                end_date=r.end_date,
                days_overdue=days,
                severity=tier,
                potential_penalty=capped_penalty(days),
            )
        )
    return out
