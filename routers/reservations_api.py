from typing import Optional

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

import audit
import overdue
import pickup
import reservations
from dependencies import get_actor, get_db
from filter_helpers import blank_to_none, normalize_limit, normalize_offset, parse_reservation_status
from models import (
    Actor,
    BulkPickupIn,
    BulkReservationActionIn,
    BulkResult,
    CancelIn,
    CancelResult,
    ModifyResult,
    OverdueScanIn,
    OverdueScanResult,
    PickupConfirmIn,
    PickupStatus,
    PickupToken,
    RejectIn,
    Reservation,
    ReservationIn,
    ReservationModify,
)

router = APIRouter(tags=["reservations"])


@router.get("/reservations", response_model=list[Reservation])
def list_reservations_api(
    item_id: Optional[str] = None,
    user_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return reservations.list_reservations(
        db,
        actor,
        item_id=blank_to_none(item_id),
        user_id=blank_to_none(user_id),
        status=parse_reservation_status(status),
        limit=normalize_limit(limit),
        offset=normalize_offset(offset),
    )


@router.post("/reservations", response_model=Reservation, status_code=201)
def create_reservation_api(
    body: ReservationIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    r = reservations.create_reservation(db, actor, body)
    return reservations.reservation_to_schema(r)


# static paths before /reservations/{reservation_id}
@router.post("/reservations/bulk", response_model=BulkResult)
def bulk_reservation_action_api(
    body: BulkReservationActionIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return reservations.bulk_action(db, actor, body)


@router.post("/reservations/pickup/bulk", response_model=BulkResult)
def bulk_confirm_pickup_api(
    body: BulkPickupIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return pickup.bulk_confirm_pickup(db, actor, body)


@router.post("/reservations/overdue/scan", response_model=OverdueScanResult)
def overdue_scan_api(
    body: OverdueScanIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return overdue.scan_overdue(db, actor, body)


@router.get("/reservations/{reservation_id}", response_model=Reservation)
def get_reservation_api(
    reservation_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return reservations.reservation_to_schema(reservations.get_reservation(db, actor, reservation_id))


@router.get("/reservations/{reservation_id}/history", response_model=list[audit.AuditLogEntry])
def reservation_history_api(
    reservation_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return reservations.history(db, actor, reservation_id)


@router.post("/reservations/{reservation_id}/approve", response_model=Reservation)
def approve_reservation_api(
    reservation_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    r = reservations.approve_reservation(db, actor, reservation_id)
    return reservations.reservation_to_schema(r)


@router.post("/reservations/{reservation_id}/reject", response_model=Reservation)
def reject_reservation_api(
    reservation_id: str,
    body: RejectIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    r = reservations.reject_reservation(db, actor, reservation_id, body)
    return reservations.reservation_to_schema(r)


@router.patch("/reservations/{reservation_id}/modify", response_model=ModifyResult)
def modify_reservation_api(
    reservation_id: str,
    body: ReservationModify,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return reservations.modify_reservation(db, actor, reservation_id, body)


@router.post("/reservations/{reservation_id}/cancel", response_model=CancelResult)
def cancel_reservation_api(
    reservation_id: str,
    body: CancelIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return reservations.cancel_reservation(db, actor, reservation_id, body)


@router.delete("/reservations/{reservation_id}", status_code=204)
def delete_reservation_api(
    reservation_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    reservations.delete_reservation(db, actor, reservation_id)
    return Response(status_code=204)


# -----------------------
# Pickup
# -----------------------
@router.post("/reservations/{reservation_id}/pickup/token", response_model=PickupToken, status_code=201)
def issue_pickup_token_api(
    reservation_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return pickup.issue_token(db, actor, reservation_id)


@router.post("/reservations/{reservation_id}/pickup", response_model=Reservation)
def confirm_pickup_api(
    reservation_id: str,
    body: PickupConfirmIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    r = pickup.confirm_pickup(db, actor, reservation_id, body)
    return reservations.reservation_to_schema(r)


@router.get("/reservations/{reservation_id}/pickup", response_model=PickupStatus)
def pickup_status_api(
    reservation_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return pickup.pickup_status(db, actor, reservation_id)
