from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum

from typing import Iterator, Optional
from uuid import uuid4

from sqlalchemy import select, func, or_, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

import audit
import errors
import permissions
from models import (
    Actor,
    BulkResult,
    BulkResultRow,
    BulkSummary,
    Item,
    ItemIn,
    ItemStatus,
    ItemUpdate,
    ReservationStatus,
)
from orm import ItemORM, ReservationORM

ALLOWED_SORTS = {
    "name": ItemORM.name,
    "category": ItemORM.category,
    "status": ItemORM.status,
    "updated_at": ItemORM.updated_at,
}

# statuses staff may set by hand; BORROWED/RESERVED only come from lifecycle transitions
MANUAL_ITEM_STATUSES = {ItemStatus.AVAILABLE, ItemStatus.MAINTENANCE, ItemStatus.RETIRED}

# NOT NULL columns; an explicit null in a PATCH body is an error, not "unset"
REQUIRED_ITEM_FIELDS = ("name", "category", "condition", "status")


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)

def as_utc_naive(value: datetime) -> datetime:
    """Stored timestamps are naive UTC; convert aware inputs, pass naive ones through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)

def new_id() -> str:
    return str(uuid4())

def persist(db: Session, *, commit: bool) -> None:
    if commit:
        db.commit()
    else:
        db.flush()

@contextmanager
def unit_of_work(db: Session, *, commit: bool = True) -> Iterator[None]:
    """One business event: everything inside lands together or not at all.

    With ``commit=False`` the work is only flushed and the caller owns the
    transaction (and its rollback).
    """
    try:
        yield
        persist(db, commit=commit)
    except OperationalError as exc:
        db.rollback()
        raise errors.TransientStoreError("store temporarily unavailable, retry later") from exc
    except Exception:
        if commit:
            db.rollback()
        raise

def touch_row(db: Session, orm_cls, row_id: str, now: datetime):
    # Writing the row first takes the row lock (server databases) or the
    # database write lock (sqlite); every later read in this transaction
    # therefore sees committed state from competing writers.
    db.execute(
        update(orm_cls)
        .where(orm_cls.id == row_id)
        .values(updated_at=now)
        .execution_options(synchronize_session=False)
    )
    stmt = select(orm_cls).where(orm_cls.id == row_id).execution_options(populate_existing=True)
    return db.execute(stmt).scalar_one_or_none()

def lock_item(db: Session, item_id: str, now: datetime) -> ItemORM:
    item = touch_row(db, ItemORM, item_id, now)
    if item is None:
        raise errors.NotFoundError("item not found")
    return item

def lock_reservation(db: Session, reservation_id: str, now: datetime) -> ReservationORM:
    reservation = touch_row(db, ReservationORM, reservation_id, now)
    if reservation is None:
        raise errors.NotFoundError("reservation not found")
    return reservation

def item_to_schema(i: ItemORM) -> Item:
    return Item(
        id=i.id,
        name=i.name,
        category=i.category,
        condition=i.condition,
        status=i.status,
        location=i.location,
        description=i.description,
        serial_number=i.serial_number,
        value=i.value,
        created_at=i.created_at,
        updated_at=i.updated_at,
    )


# ---------- Item ----------
def serial_number_exists(db: Session, serial_number: str, exclude_item_id: Optional[str] = None) -> bool:
    stmt = select(ItemORM).where(ItemORM.serial_number == serial_number)
    if exclude_item_id:
        stmt = stmt.where(ItemORM.id != exclude_item_id)
    return db.execute(stmt).first() is not None


def get_item(db: Session, item_id: str) -> Optional[ItemORM]:
    return db.get(ItemORM, item_id)


def get_item_or_404(db: Session, item_id: str) -> ItemORM:
    item = db.get(ItemORM, item_id)
    if item is None:
        raise errors.NotFoundError("item not found")
    return item


def create_item(
    db: Session,
    actor: Actor,
    body: ItemIn,
    *,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> ItemORM:
    permissions.require_staff(actor, "create items")
    if body.serial_number and serial_number_exists(db, body.serial_number):
        raise errors.ConflictError("serial_number already exists")

    now = now or utcnow()
    with unit_of_work(db, commit=commit):
        item = ItemORM(
            id=new_id(),
            name=body.name,
            category=body.category,
            condition=body.condition,
            status=ItemStatus.AVAILABLE,
            location=body.location,
            description=body.description,
            serial_number=body.serial_number,
            value=body.value,
            created_at=now,
            updated_at=now,
        )
        db.add(item)
        db.flush()
        audit.record(
            db,
            actor.user_id,
            "Item",
            item.id,
            audit.CreateItemPayload(
                name=item.name,
                category=item.category,
                condition=item.condition,
                status=item.status,
            ),
            now=now,
        )
    return item


def update_item(
    db: Session,
    actor: Actor,
    item_id: str,
    body: ItemUpdate,
    *,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> ItemORM:
    permissions.require_staff(actor, "edit items")
    now = now or utcnow()

    data = body.model_dump(exclude_unset=True)
    nulled = [k for k in REQUIRED_ITEM_FIELDS if k in data and data[k] is None]
    if nulled:
        raise errors.ValidationError(f"{', '.join(nulled)} cannot be null")
    if "name" in data and not data["name"].strip():
        raise errors.ValidationError("name cannot be blank")
    if data.get("serial_number") and serial_number_exists(db, data["serial_number"], exclude_item_id=item_id):
        raise errors.ConflictError("serial_number already exists")

    with unit_of_work(db, commit=commit):
        item = lock_item(db, item_id, now)

        new_status = data.get("status")
        if new_status is not None and new_status != item.status:
            if new_status not in MANUAL_ITEM_STATUSES:
                raise errors.ValidationError(f"item status {new_status.value} is set by the reservation lifecycle")
            if has_active_reservation(db, item_id):
                raise errors.StateError("item is currently borrowed; return it before changing its status")

        previous = {k: _jsonable(getattr(item, k)) for k in data}
        for k, v in data.items():
            setattr(item, k, v)
        item.updated_at = now
        if item.status == ItemStatus.AVAILABLE:
            # back from maintenance: approved bookings hold it again
            sync_item_status(db, item, now)

        audit.record(
            db,
            actor.user_id,
            "Item",
            item.id,
            audit.UpdateItemPayload(
                previous=previous,
                updated={k: _jsonable(v) for k, v in data.items()},
            ),
            now=now,
        )
    return item


def bulk_result(rows: list[BulkResultRow]) -> BulkResult:
    successful = sum(1 for r in rows if r.success)
    return BulkResult(
        summary=BulkSummary(total=len(rows), successful=successful, failed=len(rows) - successful),
        results=rows,
    )


def _jsonable(value):
    if isinstance(value, Enum):
        return value.value
    return value


def sync_item_status(db: Session, item: ItemORM, now: datetime) -> ItemStatus:
    """Recompute Item.status from the item's reservations.

    Every reservation or return transition ends here, inside its own
    transaction.  MAINTENANCE and RETIRED are held by staff; only an
    ACTIVE loan overrides them.
    """
    db.flush()
    held = set(
        db.execute(
            select(ReservationORM.status).where(
                ReservationORM.item_id == item.id,
                ReservationORM.status.in_((ReservationStatus.APPROVED, ReservationStatus.ACTIVE)),
            )
        ).scalars()
    )
    if ReservationStatus.ACTIVE in held:
        status = ItemStatus.BORROWED
    elif item.status in (ItemStatus.MAINTENANCE, ItemStatus.RETIRED):
        return item.status
    elif ReservationStatus.APPROVED in held:
        status = ItemStatus.RESERVED
    else:
        status = ItemStatus.AVAILABLE

    if item.status != status:
        item.status = status
        item.updated_at = now
    return status


def has_active_reservation(db: Session, item_id: str) -> bool:
    stmt = select(ReservationORM.id).where(
        ReservationORM.item_id == item_id,
        ReservationORM.status == ReservationStatus.ACTIVE,
    )
    return db.execute(stmt).first() is not None


def build_items_query(q: str | None, status: str | None, category: str | None):
    stmt = select(ItemORM)

    if q:
        like = f"%{q}%"
        stmt = stmt.where(
            or_(
                ItemORM.name.ilike(like),
                ItemORM.serial_number.ilike(like),
                ItemORM.description.ilike(like),
            )
        )
    if status:
        stmt = stmt.where(ItemORM.status == status)

    if category:
        stmt = stmt.where(ItemORM.category == category)

    return stmt

def count_items_filtered(db: Session, *, q: str | None, status: str | None, category: str | None) -> int:
    stmt = build_items_query(q, status, category)
    count_stmt = select(func.count()).select_from(stmt.subquery())
    return int(db.execute(count_stmt).scalar_one())

def list_items_filtered(
    db: Session,
    *,
    q: str | None,
    status: str | None,
    category: str | None,
    sort: str,
    order: str,
    limit: int,
    offset: int,
) -> list[Item]:
    stmt = build_items_query(q, status, category)

    col = ALLOWED_SORTS.get(sort, ItemORM.name)
    desc = (order or "").lower() == "desc"
    stmt = stmt.order_by(col.desc() if desc else col.asc())

    stmt = stmt.limit(limit).offset(offset)
    rows = db.execute(stmt).scalars().all()
    return [item_to_schema(i) for i in rows]
