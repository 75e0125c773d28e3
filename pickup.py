"""Pickup tokens and pickup confirmation (APPROVED -> ACTIVE)."""
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

import audit
import config
import crud
import errors
import permissions
from models import (
    Actor,
    BulkPickupIn,
    BulkResult,
    BulkResultRow,
    PickupConfirmIn,
    PickupStatus,
    PickupToken,
    ReservationStatus,
)
from orm import ReservationORM
from reservations import get_reservation_or_404

logger = logging.getLogger(__name__)

TOKEN_ACTION = "GENERATE_PICKUP_TOKEN"


def _require_pickable(reservation: ReservationORM) -> None:
    if reservation.status != ReservationStatus.APPROVED:
        raise errors.StateError(f"cannot confirm pickup for a reservation with status {reservation.status.value}")
    if reservation.pickup_confirmed:
        raise errors.StateError("item has already been picked up")


def _require_item_free(db: Session, item_id: str) -> None:
    # one ACTIVE loan per item; a later booking waits for the earlier return
    if crud.has_active_reservation(db, item_id):
        raise errors.StateError("item is still out on another loan")


def latest_token(db: Session, reservation_id: str) -> Optional[audit.GeneratePickupTokenPayload]:
    row = audit.latest(db, action=TOKEN_ACTION, entity_type="Reservation", entity_id=reservation_id)
    if row is None:
        return None
    return audit.parse_payload(row)


def issue_token(
    db: Session,
    actor: Actor,
    reservation_id: str,
    *,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> PickupToken:
    """Issue a fresh token; any earlier token for the reservation stops matching."""
    now = now or crud.utcnow()
    existing = get_reservation_or_404(db, reservation_id)
    permissions.require_owner_or_staff(actor, existing.user_id, "issue a pickup token for this reservation")

    with crud.unit_of_work(db, commit=commit):
        reservation = crud.lock_reservation(db, reservation_id, now)
        _require_pickable(reservation)

        payload = audit.GeneratePickupTokenPayload(
            token=secrets.token_hex(32),
            expires_at=now + timedelta(hours=config.PICKUP_TOKEN_TTL_HOURS),
            generated_at=now,
        )
        audit.record(db, actor.user_id, "Reservation", reservation.id, payload, now=now)

    logger.info("pickup token issued reservation_id=%s by=%s", reservation_id, actor.user_id)
    return PickupToken(reservation_id=reservation_id, token=payload.token, expires_at=payload.expires_at)


def _activate(db: Session, reservation: ReservationORM, now: datetime, notes: Optional[str]) -> ReservationStatus:
    previous = reservation.status
    reservation.status = ReservationStatus.ACTIVE
    reservation.pickup_confirmed = True
    reservation.pickup_confirmed_at = now
    reservation.actual_start_date = now
    if notes:
        reservation.notes = notes
    reservation.updated_at = now
    return previous


def confirm_pickup(
    db: Session,
    actor: Actor,
    reservation_id: str,
    body: PickupConfirmIn,
    *,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> ReservationORM:
    now = now or crud.utcnow()
    existing = get_reservation_or_404(db, reservation_id)
    permissions.require_owner_or_staff(actor, existing.user_id, "confirm pickup for this reservation")

    with crud.unit_of_work(db, commit=commit):
        item = crud.lock_item(db, existing.item_id, now)
        reservation = crud.lock_reservation(db, reservation_id, now)
        _require_pickable(reservation)
        _require_item_free(db, item.id)

        token = latest_token(db, reservation.id)
        if token is None:
            raise errors.PickupTokenMissing("no pickup token has been issued for this reservation")
        if not secrets.compare_digest(token.token, body.token):
            raise errors.PickupTokenMismatch("invalid pickup token")
        if now > token.expires_at:
            raise errors.PickupTokenExpired("pickup token has expired; issue a new one")

        previous = _activate(db, reservation, now, body.notes)
        crud.sync_item_status(db, item, now)
        audit.record(
            db,
            actor.user_id,
            "Reservation",
            reservation.id,
            audit.ConfirmPickupPayload(
                previous_status=previous,
                new_status=reservation.status,
                confirmed_at=now,
                is_staff_confirmation=permissions.is_staff(actor),
                notes=body.notes,
            ),
            now=now,
        )

    logger.info("pickup confirmed reservation_id=%s item_id=%s by=%s", reservation.id, item.id, actor.user_id)
    return reservation


def bulk_confirm_pickup(
    db: Session,
    actor: Actor,
    body: BulkPickupIn,
    *,
    now: Optional[datetime] = None,
) -> BulkResult:
    """Staff hand-over of several reservations at once, no tokens involved.

    Each reservation is its own transaction; a failure is reported in its
    result row and the rest carry on.
    """
    permissions.require_staff(actor, "confirm pickups in bulk")
    now = now or crud.utcnow()

    results: list[BulkResultRow] = []
    for reservation_id in body.reservation_ids:
        try:
            with crud.unit_of_work(db):
                existing = get_reservation_or_404(db, reservation_id)
                item = crud.lock_item(db, existing.item_id, now)
                reservation = crud.lock_reservation(db, reservation_id, now)
                _require_pickable(reservation)
                _require_item_free(db, item.id)

                previous = _activate(db, reservation, now, body.notes)
                crud.sync_item_status(db, item, now)
                audit.record(
                    db,
                    actor.user_id,
                    "Reservation",
                    reservation.id,
                    audit.BulkConfirmPickupPayload(
                        previous_status=previous,
                        new_status=reservation.status,
                        confirmed_at=now,
                        notes=body.notes,
                    ),
                    now=now,
                )
        except errors.LendingError as exc:
            logger.warning("bulk pickup failed reservation_id=%s error=%s", reservation_id, exc.message)
            results.append(BulkResultRow(id=reservation_id, success=False, error=exc.message))
        else:
            results.append(BulkResultRow(id=reservation_id, success=True))

    result = crud.bulk_result(results)
    logger.info(
        "bulk pickup done total=%s successful=%s by=%s", result.summary.total, result.summary.successful, actor.user_id
    )
    return result


def pickup_status(
    db: Session,
    actor: Actor,
    reservation_id: str,
    *,
    now: Optional[datetime] = None,
) -> PickupStatus:
    now = now or crud.utcnow()
    reservation = get_reservation_or_404(db, reservation_id)
    permissions.require_owner_or_staff(actor, reservation.user_id, "view pickup status for this reservation")

    token = latest_token(db, reservation.id)
    if token is None:
        token_status = "not_generated"
    elif now > token.expires_at:
        token_status = "expired"
    else:
        token_status = "valid"

    return PickupStatus(
        reservation_id=reservation.id,
        reservation_status=reservation.status,
        is_confirmed=reservation.pickup_confirmed,
        confirmed_at=reservation.pickup_confirmed_at,
        can_confirm=reservation.status == ReservationStatus.APPROVED and not reservation.pickup_confirmed,
        token_status=token_status,
        token_expires_at=token.expires_at if token else None,
        scheduled_start=reservation.start_date,
        actual_start=reservation.actual_start_date,
        is_overdue=not reservation.pickup_confirmed and now > reservation.start_date,
    )
