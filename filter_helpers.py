from enum import Enum
from typing import Optional, TypeVar

import errors
from models import (
    DamageReportStatus,
    DamageSeverity,
    DamageType,
    ItemStatus,
    OverdueSeverity,
    ReservationStatus,
    ReturnStatus,
)

E = TypeVar("E", bound=Enum)

VALID_SORTS = {"name", "category", "status", "updated_at"}
VALID_ORDERS = {"asc", "desc"}


def blank_to_none(value: Optional[str]) -> Optional[str]:
    if value == "":
        return None
    return value


def _parse_enum(enum_cls: type[E], value: Optional[str], field: str) -> Optional[E]:
    value = blank_to_none(value)
    if value is None:
        return None
    try:
        return enum_cls(value.upper())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise errors.ValidationError(f"invalid {field} {value!r}; expected one of {allowed}") from None


def normalize_item_status(status: Optional[str]) -> Optional[str]:
    # the item list is forgiving: unknown filters just mean "all"
    status = blank_to_none(status)
    if status and status.upper() in ItemStatus.__members__:
        return status.upper()
    return None


def parse_reservation_status(status: Optional[str]) -> Optional[ReservationStatus]:
    return _parse_enum(ReservationStatus, status, "status")


def parse_return_status(status: Optional[str]) -> Optional[ReturnStatus]:
    return _parse_enum(ReturnStatus, status, "status")


def parse_damage_status(status: Optional[str]) -> Optional[DamageReportStatus]:
    return _parse_enum(DamageReportStatus, status, "status")


def parse_damage_severity(severity: Optional[str]) -> Optional[DamageSeverity]:
    return _parse_enum(DamageSeverity, severity, "severity")


def parse_damage_type(damage_type: Optional[str]) -> Optional[DamageType]:
    return _parse_enum(DamageType, damage_type, "damage_type")


def parse_overdue_severity(severity: Optional[str]) -> Optional[OverdueSeverity]:
    if blank_to_none(severity) and severity.upper() == "ALL":
        return None
    return _parse_enum(OverdueSeverity, severity, "severity")


def normalize_sort(sort: str) -> str:
    if sort in VALID_SORTS:
        return sort
    return "name"


def normalize_order(order: str) -> str:
    if order in VALID_ORDERS:
        return order
    return "asc"


def normalize_limit(limit: int, *, min_value: int = 1, max_value: int = 500) -> int:
    if limit < min_value:
        return min_value
    if limit > max_value:
        return max_value
    return limit


def normalize_offset(offset: int) -> int:
    if offset < 0:
        return 0
    return offset
