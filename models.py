from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Literal
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    MANAGER = "MANAGER"
    STAFF = "STAFF"
    BORROWER = "BORROWER"


class ItemCondition(str, Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"
    DAMAGED = "DAMAGED"


class ItemStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    RESERVED = "RESERVED"
    BORROWED = "BORROWED"
    MAINTENANCE = "MAINTENANCE"
    RETIRED = "RETIRED"


class ReservationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class ReturnStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    DAMAGED = "DAMAGED"


class DamageType(str, Enum):
    PHYSICAL = "PHYSICAL"
    FUNCTIONAL = "FUNCTIONAL"
    COSMETIC = "COSMETIC"
    MISSING_PARTS = "MISSING_PARTS"
    OTHER = "OTHER"


class DamageSeverity(str, Enum):
    MINOR = "MINOR"
    MODERATE = "MODERATE"
    MAJOR = "MAJOR"
    TOTAL_LOSS = "TOTAL_LOSS"


class DamageReportStatus(str, Enum):
    REPORTED = "REPORTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RESOLVED = "RESOLVED"


class OverdueSeverity(str, Enum):
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class NotificationType(str, Enum):
    REMINDER = "REMINDER"
    WARNING = "WARNING"
    FINAL_NOTICE = "FINAL_NOTICE"


# reservations in these statuses hold their date range
BLOCKING_STATUSES = (
    ReservationStatus.PENDING,
    ReservationStatus.APPROVED,
    ReservationStatus.ACTIVE,
)

# higher is better; used for condition-degradation penalties
CONDITION_SCORES = {
    ItemCondition.EXCELLENT: 5,
    ItemCondition.GOOD: 4,
    ItemCondition.FAIR: 3,
    ItemCondition.POOR: 2,
    ItemCondition.DAMAGED: 1,
}


class Actor(BaseModel):
    """The already-authenticated caller of a lifecycle operation."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    role: Role


# ---------- Item ----------
class ItemIn(BaseModel):
    name: str = Field(min_length=1)
    category: str = "general"
    condition: ItemCondition = ItemCondition.EXCELLENT
    location: Optional[str] = None
    description: Optional[str] = None
    serial_number: Optional[str] = None
    value: Optional[float] = Field(default=None, ge=0)

class ItemUpdate(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    condition: Optional[ItemCondition] = None
    location: Optional[str] = None
    description: Optional[str] = None
    serial_number: Optional[str] = None
    value: Optional[float] = Field(default=None, ge=0)
    status: Optional[ItemStatus] = None

class Item(ItemIn):
    id: str
    status: ItemStatus = ItemStatus.AVAILABLE
    created_at: datetime
    updated_at: datetime


# ---------- Reservation ----------
class ReservationIn(BaseModel):
    item_id: str
    start_date: datetime
    end_date: datetime
    purpose: Optional[str] = None
    notes: Optional[str] = None

class ReservationModify(BaseModel):
    start_date: datetime
    end_date: datetime
    reason: str = Field(min_length=1)
    purpose: Optional[str] = None
    notes: Optional[str] = None

class CancelIn(BaseModel):
    reason: str = Field(min_length=1)
    notes: Optional[str] = None

class RejectIn(BaseModel):
    reason: str = Field(min_length=1)

class Reservation(BaseModel):
    id: str
    item_id: str
    user_id: str
    start_date: datetime
    end_date: datetime
    actual_start_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    status: ReservationStatus
    purpose: Optional[str] = None
    notes: Optional[str] = None
    approved_by_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    pickup_confirmed: bool = False
    pickup_confirmed_at: Optional[datetime] = None
    overdue_penalty_points: int = 0
    created_at: datetime
    updated_at: datetime

class ReservationConflict(BaseModel):
    id: str
    user_id: str
    start_date: datetime
    end_date: datetime
    status: ReservationStatus

class Availability(BaseModel):
    item_id: str
    start_date: datetime
    end_date: datetime
    available: bool
    conflicts: list[ReservationConflict]

class ModifyResult(BaseModel):
    reservation: Reservation
    requires_reapproval: bool
    message: str

class CancelResult(BaseModel):
    reservation: Reservation
    trust_score_impact: int
    penalty_reason: Optional[str] = None
    message: str


# ---------- Pickup ----------
class PickupToken(BaseModel):
    reservation_id: str
    token: str
    expires_at: datetime

class PickupConfirmIn(BaseModel):
    token: str = Field(min_length=1)
    notes: Optional[str] = None

class PickupStatus(BaseModel):
    reservation_id: str
    reservation_status: ReservationStatus
    is_confirmed: bool
    confirmed_at: Optional[datetime] = None
    can_confirm: bool
    token_status: Literal["not_generated", "valid", "expired"]
    token_expires_at: Optional[datetime] = None
    scheduled_start: datetime
    actual_start: Optional[datetime] = None
    is_overdue: bool

class BulkPickupIn(BaseModel):
    reservation_ids: list[str] = Field(min_length=1)
    notes: Optional[str] = None

class BulkReservationActionIn(BaseModel):
    action: Literal["approve", "reject", "cancel", "delete"]
    reservation_ids: list[str] = Field(min_length=1)
    reason: Optional[str] = None

class BulkResultRow(BaseModel):
    id: str
    success: bool
    error: Optional[str] = None

class BulkSummary(BaseModel):
    total: int
    successful: int
    failed: int

class BulkResult(BaseModel):
    summary: BulkSummary
    results: list[BulkResultRow]


# ---------- Return ----------
class ReturnIn(BaseModel):
    item_id: Optional[str] = None
    condition_on_return: ItemCondition = ItemCondition.GOOD
    damage_report: Optional[str] = None
    damage_images: list[str] = Field(default_factory=list)
    notes: Optional[str] = None
    return_date: Optional[datetime] = None

class Return(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    reservation_id: str
    item_id: str
    user_id: str
    submitted_by_id: str
    return_date: datetime
    condition_on_return: ItemCondition
    status: ReturnStatus
    damage_report: Optional[str] = None
    damage_images: list[str] = Field(default_factory=list)
    approved_by_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    penalty_applied: bool = False
    penalty_amount: Optional[int] = None
    penalty_reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

class ReturnSubmission(BaseModel):
    return_record: Return
    auto_approved: bool
    message: str

class ReturnReviewIn(BaseModel):
    approved: bool
    condition_on_return: Optional[ItemCondition] = None
    damage_report: Optional[str] = None
    penalty_points: Optional[int] = Field(default=None, ge=0, le=100)
    penalty_reason: Optional[str] = None
    rejection_reason: Optional[str] = None
    staff_notes: Optional[str] = None

class BulkReturnReviewIn(BaseModel):
    return_ids: list[str] = Field(min_length=1)
    approved: bool
    rejection_reason: Optional[str] = None
    staff_notes: Optional[str] = None

class ReturnReviewResult(BaseModel):
    return_record: Return
    reservation_status: ReservationStatus
    item_status: ItemStatus
    penalty_applied: int

class LateReturn(BaseModel):
    reservation_id: str
    item_id: str
    user_id: str
    end_date: datetime
    days_overdue: int
    severity: OverdueSeverity
    potential_penalty: int


# ---------- Condition assessment ----------
class CriterionIn(BaseModel):
    name: str = Field(min_length=1)
    value: int = Field(ge=1, le=5)
    weight: float = Field(gt=0)
    notes: Optional[str] = None

class ConditionThresholds(BaseModel):
    excellent: float
    good: float
    fair: float
    poor: float

class AssessmentIn(BaseModel):
    criteria: list[CriterionIn] = Field(min_length=1)
    thresholds: Optional[ConditionThresholds] = None
    override_condition: Optional[ItemCondition] = None
    penalty_points: Optional[int] = Field(default=None, ge=0, le=100)
    penalty_reason: Optional[str] = None
    notes: Optional[str] = None

class CriterionScore(BaseModel):
    name: str
    value: int
    weight: float
    weighted_value: float
    notes: Optional[str] = None

class Assessment(BaseModel):
    return_id: str
    overall_score: float
    original_condition: ItemCondition
    determined_condition: ItemCondition
    final_condition: ItemCondition
    detailed_scores: list[CriterionScore]
    calculated_penalty: int
    recommended_penalty: int
    penalty_reason: Optional[str] = None
    assessed_by: str
    assessed_at: datetime


# ---------- Damage ----------
class DamageReportIn(BaseModel):
    damage_type: DamageType
    severity: DamageSeverity
    description: str = Field(min_length=10)
    damage_images: list[str] = Field(default_factory=list)
    estimated_repair_cost: Optional[float] = Field(default=None, ge=0)
    is_repairable: Optional[bool] = None
    affects_usability: bool = False
    witness_details: Optional[str] = None
    incident_date: Optional[datetime] = None

class DamageReportUpdate(BaseModel):
    status: Optional[DamageReportStatus] = None
    admin_notes: Optional[str] = None
    repair_cost: Optional[float] = Field(default=None, ge=0)
    penalty_amount: Optional[int] = Field(default=None, ge=0, le=100)
    resolution_notes: Optional[str] = None

class DamageReport(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    return_id: str
    damage_type: DamageType
    severity: DamageSeverity
    description: str
    damage_images: list[str] = Field(default_factory=list)
    estimated_repair_cost: Optional[float] = None
    is_repairable: Optional[bool] = None
    affects_usability: bool
    reported_by_id: str
    witness_details: Optional[str] = None
    incident_date: datetime
    status: DamageReportStatus
    admin_notes: Optional[str] = None
    repair_cost: Optional[float] = None
    penalty_amount: Optional[int] = None
    approved_by_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    resolution_date: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# ---------- Reputation ----------
class ReputationEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    change: int
    reason: str
    previous_score: int
    new_score: int
    created_at: datetime

class Reputation(BaseModel):
    user_id: str
    score: int
    recomputed_score: int
    history: list[ReputationEntry]


# ---------- Overdue scan ----------
class OverdueScanIn(BaseModel):
    days_overdue: int = Field(default=1, ge=1, le=365)
    include_approved: bool = True
    include_active: bool = False

class NotificationIntent(BaseModel):
    user_id: str
    reservation_id: str
    type: NotificationType
    days_overdue: int

class OverdueScanRow(BaseModel):
    id: str
    success: bool
    error: Optional[str] = None
    days_overdue: Optional[int] = None
    severity: Optional[OverdueSeverity] = None
    penalty_points: int = 0

class OverdueScanSummary(BaseModel):
    total: int
    successful: int
    failed: int
    penalized: int
    total_penalty_points: int

class OverdueScanResult(BaseModel):
    summary: OverdueScanSummary
    results: list[OverdueScanRow]
    notifications: list[NotificationIntent]
