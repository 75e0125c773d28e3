from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import BLOCKING_STATUSES, Availability, ReservationConflict
from orm import ReservationORM


def overlaps(s1: datetime, e1: datetime, s2: datetime, e2: datetime) -> bool:
    """Half-open ranges: a booking ending at 10:00 does not clash with one starting at 10:00."""
    return s1 < e2 and s2 < e1


def find_conflicts(
    db: Session,
    item_id: str,
    start_date: datetime,
    end_date: datetime,
    exclude_reservation_id: Optional[str] = None,
) -> list[ReservationORM]:
    # Callers that go on to write must hold the item lock (crud.lock_item)
    # so the answer stays true until their commit.
    stmt = select(ReservationORM).where(
        ReservationORM.item_id == item_id,
        ReservationORM.status.in_(BLOCKING_STATUSES),
        ReservationORM.start_date < end_date,
        ReservationORM.end_date > start_date,
    )
    if exclude_reservation_id:
        stmt = stmt.where(ReservationORM.id != exclude_reservation_id)
    stmt = stmt.order_by(ReservationORM.start_date.asc())
    return list(db.execute(stmt).scalars().all())


def is_available(
    db: Session,
    item_id: str,
    start_date: datetime,
    end_date: datetime,
    exclude_reservation_id: Optional[str] = None,
) -> bool:
    return not find_conflicts(db, item_id, start_date, end_date, exclude_reservation_id)


def _conflict_to_schema(r: ReservationORM) -> ReservationConflict:
    return ReservationConflict(
        id=r.id,
        user_id=r.user_id,
        start_date=r.start_date,
        end_date=r.end_date,
        status=r.status,
    )


def conflicts_payload(conflicts: list[ReservationORM]) -> dict:
    """The ``extra`` block of a ConflictError: the clashing bookings, JSON ready."""
    return {"conflicts": [_conflict_to_schema(c).model_dump(mode="json") for c in conflicts]}


def check(
    db: Session,
    item_id: str,
    start_date: datetime,
    end_date: datetime,
    exclude_reservation_id: Optional[str] = None,
) -> Availability:
    conflicts = find_conflicts(db, item_id, start_date, end_date, exclude_reservation_id)
    return Availability(
        item_id=item_id,
        start_date=start_date,
        end_date=end_date,
        available=not conflicts,
        conflicts=[_conflict_to_schema(c) for c in conflicts],
    )
