from datetime import datetime
from sqlalchemy import String, DateTime, Text, ForeignKey, Integer, Float, Boolean, JSON, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db import Base
from models import (
    DamageReportStatus,
    DamageSeverity,
    DamageType,
    ItemCondition,
    ItemStatus,
    ReservationStatus,
    ReturnStatus,
)


def _enum(enum_cls):
    return SAEnum(enum_cls, native_enum=False, length=20, validate_strings=True)


class ItemORM(Base):
    __tablename__ = "items"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False, index=True)
    condition: Mapped[ItemCondition] = mapped_column(_enum(ItemCondition), nullable=False, default=ItemCondition.EXCELLENT)
    status: Mapped[ItemStatus] = mapped_column(_enum(ItemStatus), nullable=False, default=ItemStatus.AVAILABLE, index=True)
    location: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    serial_number: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    value: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    reservations: Mapped[list["ReservationORM"]] = relationship(back_populates="item")


class ReservationORM(Base):
    __tablename__ = "reservations"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    item_id: Mapped[str] = mapped_column(String, ForeignKey("items.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)

    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    end_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    actual_start_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    actual_end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    status: Mapped[ReservationStatus] = mapped_column(
        _enum(ReservationStatus), nullable=False, default=ReservationStatus.PENDING, index=True
    )
    purpose: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    approved_by_id: Mapped[str | None] = mapped_column(String, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    pickup_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pickup_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # points already charged by overdue scans, so rescans only charge the difference
    overdue_penalty_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    item: Mapped[ItemORM] = relationship(back_populates="reservations")
    returns: Mapped[list["ReturnORM"]] = relationship(
        back_populates="reservation",
        cascade="all, delete-orphan",
        order_by="ReturnORM.created_at",
    )


class ReturnORM(Base):
    __tablename__ = "returns"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    reservation_id: Mapped[str] = mapped_column(String, ForeignKey("reservations.id"), nullable=False, index=True)
    item_id: Mapped[str] = mapped_column(String, ForeignKey("items.id"), nullable=False, index=True)
    # the borrower; penalties land on this user
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    submitted_by_id: Mapped[str] = mapped_column(String, nullable=False)

    return_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    condition_on_return: Mapped[ItemCondition] = mapped_column(_enum(ItemCondition), nullable=False)
    status: Mapped[ReturnStatus] = mapped_column(_enum(ReturnStatus), nullable=False, default=ReturnStatus.PENDING, index=True)
    damage_report: Mapped[str | None] = mapped_column(Text, nullable=True)
    damage_images: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    approved_by_id: Mapped[str | None] = mapped_column(String, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    penalty_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    penalty_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    penalty_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    reservation: Mapped[ReservationORM] = relationship(back_populates="returns")
    item: Mapped[ItemORM] = relationship()
    damage_reports: Mapped[list["DamageReportORM"]] = relationship(
        back_populates="return_record",
        cascade="all, delete-orphan",
    )


class DamageReportORM(Base):
    __tablename__ = "damage_reports"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    return_id: Mapped[str] = mapped_column(String, ForeignKey("returns.id"), nullable=False, index=True)

    damage_type: Mapped[DamageType] = mapped_column(_enum(DamageType), nullable=False)
    severity: Mapped[DamageSeverity] = mapped_column(_enum(DamageSeverity), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    damage_images: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    estimated_repair_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_repairable: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    affects_usability: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reported_by_id: Mapped[str] = mapped_column(String, nullable=False)
    witness_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    incident_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    status: Mapped[DamageReportStatus] = mapped_column(
        _enum(DamageReportStatus), nullable=False, default=DamageReportStatus.REPORTED, index=True
    )
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    repair_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    penalty_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    approved_by_id: Mapped[str | None] = mapped_column(String, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    resolution_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    return_record: Mapped[ReturnORM] = relationship(back_populates="damage_reports")


class ReputationEntryORM(Base):
    """Immutable ledger row; never updated or deleted."""

    __tablename__ = "reputation_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    change: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    previous_score: Mapped[int] = mapped_column(Integer, nullable=False)
    new_score: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)


class TrustScoreORM(Base):
    """Cached current score; written only together with a ledger entry."""

    __tablename__ = "trust_scores"

    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    score: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class AuditLogORM(Base):
    """Append-only. Integer ids give a total order even for identical timestamps."""

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    action: Mapped[str] = mapped_column(String, nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
    entity_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    changes: Mapped[dict] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
