from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import availability
import crud
import errors
from dependencies import get_actor, get_db
from filter_helpers import (
    blank_to_none,
    normalize_item_status,
    normalize_limit,
    normalize_offset,
    normalize_order,
    normalize_sort,
)
from models import Actor, Availability, Item, ItemIn, ItemUpdate

router = APIRouter(tags=["items"])


@router.get("/items", response_model=list[Item])
def list_items_api(
    q: Optional[str] = None,
    category: Optional[str] = None,
    status: Optional[str] = None,
    sort: str = "name",
    order: str = "asc",
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    sort = normalize_sort(sort)
    order = normalize_order(order)
    status = normalize_item_status(status)
    category = blank_to_none(category)
    limit = normalize_limit(limit)
    offset = normalize_offset(offset)

    return crud.list_items_filtered(
        db,
        q=q,
        status=status,
        category=category,
        sort=sort,
        order=order,
        limit=limit,
        offset=offset,
    )


@router.post("/items", response_model=Item, status_code=201)
def create_item_api(
    body: ItemIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return crud.item_to_schema(crud.create_item(db, actor, body))


@router.get("/items/{item_id}", response_model=Item)
def get_item_api(
    item_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return crud.item_to_schema(crud.get_item_or_404(db, item_id))


@router.patch("/items/{item_id}", response_model=Item)
def update_item_api(
    item_id: str,
    body: ItemUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return crud.item_to_schema(crud.update_item(db, actor, item_id, body))


@router.get("/items/{item_id}/availability", response_model=Availability)
def item_availability_api(
    item_id: str,
    start_date: datetime,
    end_date: datetime,
    exclude_reservation_id: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    crud.get_item_or_404(db, item_id)
    start_date = crud.as_utc_naive(start_date)
    end_date = crud.as_utc_naive(end_date)
    if start_date >= end_date:
        raise errors.ValidationError("end_date must be after start_date")
    return availability.check(db, item_id, start_date, end_date, blank_to_none(exclude_reservation_id))
