from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from ltip_admin.schemas.ltip import VestingFrequency, VestingScheduleType


class VestingEventStatus(str, Enum):
    PENDING = "pending"
    DUE = "due"
    VESTED = "vested"
    EXERCISED = "exercised"
    TRANSFERRED = "transferred"
    FORFEITED = "forfeited"
    CANCELLED = "cancelled"


class VestingEventType(str, Enum):
    CLIFF = "cliff"
    TIME_BASED = "time_based"
    PERFORMANCE = "performance"
    HYBRID = "hybrid"
    ACCELERATION = "acceleration"


PERFORMANCE_EVENT_TYPES = {VestingEventType.PERFORMANCE.value, VestingEventType.HYBRID.value}


class MetricConfirmation(BaseModel):
    performance_metric_id: UUID
    confirmed: bool
    actual_value: Decimal | None = None
    notes: str | None = None


class SettleEventRequest(BaseModel):
    confirmations: list[MetricConfirmation] = Field(default_factory=list)
    notes: str | None = None


class ConfirmPerformanceRequest(BaseModel):
    confirmations: list[MetricConfirmation] = Field(min_length=1)
    notes: str | None = None


class VestingEventOut(BaseModel):
    id: UUID
    grant_id: UUID
    employee_id: UUID
    sequence_number: int
    vesting_date: date
    shares_to_vest: int
    cumulative_shares_vested: int
    event_type: VestingEventType
    status: VestingEventStatus
    performance_metric_id: UUID | None = None
    performance_condition_met: bool = False
    performance_notes: str | None = None
    exercise_price: Decimal | None = None
    total_exercise_cost: Decimal | None = None
    processed_at: datetime | None = None

    class Config:
        from_attributes = True


class SweepResult(BaseModel):
    as_of: date
    updated: int


class GenerationResult(BaseModel):
    total_grants: int = 0
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    error_details: list[str] = Field(default_factory=list)


class VestingEventStats(BaseModel):
    total_events: int = 0
    total_shares: int = 0
    events_by_status: dict[str, int] = Field(default_factory=dict)
    shares_by_status: dict[str, int] = Field(default_factory=dict)
    events_by_type: dict[str, int] = Field(default_factory=dict)
    processed_events: int = 0


class GrantRollup(BaseModel):
    grant_id: UUID
    total_shares: int
    scheduled_shares: int
    vested_shares: int
    unvested_shares: int
    excluded_shares: int


class LedgerDiscrepancy(BaseModel):
    resource_type: str
    resource_id: UUID
    field: str
    expected: int
    actual: int


class CompanyLedgerStats(BaseModel):
    as_of: date
    pools_total_allocated: int = 0
    pools_used: int = 0
    pools_available: int = 0
    plans_total_allocated: int = 0
    plans_granted: int = 0
    plans_available: int = 0
    grants_total_shares: int = 0
    vested_shares: int = 0
    unvested_shares: int = 0
    excluded_shares: int = 0
    company_reserved_available: int = 0
    employee_vested_total: int = 0
    events: VestingEventStats = Field(default_factory=VestingEventStats)
    discrepancies: list[LedgerDiscrepancy] = Field(default_factory=list)


class EventClosureRequest(BaseModel):
    reason: str | None = None


class GenerateEventsRequest(BaseModel):
    grant_ids: list[UUID] | None = None


class GrantForfeitResult(BaseModel):
    grant_id: UUID
    forfeited_events: int


class AccelerationRequest(BaseModel):
    percentage: Decimal = Field(gt=0, le=100)
    reason: str | None = None
    as_of: date | None = None


class MilestoneType(str, Enum):
    TIME = "time"
    CLIFF = "cliff"
    PERFORMANCE = "performance"


class PerformanceMetricCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    metric_type: str | None = Field(default=None, max_length=50)
    unit_of_measure: str | None = Field(default=None, max_length=50)
    target_value: Decimal | None = None


class PerformanceMetricOut(BaseModel):
    id: UUID
    name: str
    description: str | None = None
    metric_type: str | None = None
    unit_of_measure: str | None = None
    target_value: Decimal | None = None
    actual_value: Decimal | None = None
    is_achieved: bool = False
    achieved_at: datetime | None = None
    confirmation_notes: str | None = None

    class Config:
        from_attributes = True


class VestingMilestoneCreate(BaseModel):
    sequence_order: int = Field(ge=1)
    vesting_percentage: Decimal = Field(ge=0, le=100)
    months_from_start: int = Field(ge=0)
    milestone_type: MilestoneType = MilestoneType.TIME
    performance_metric_id: UUID | None = None
    target_value: Decimal | None = None


class VestingMilestoneOut(BaseModel):
    id: UUID
    sequence_order: int
    vesting_percentage: Decimal
    months_from_start: int
    milestone_type: MilestoneType
    performance_metric_id: UUID | None = None
    target_value: Decimal | None = None
    is_achieved: bool = False

    class Config:
        from_attributes = True


class VestingScheduleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    schedule_type: VestingScheduleType = VestingScheduleType.TIME_BASED
    total_duration_months: int = Field(default=48, ge=1)
    cliff_months: int = Field(default=12, ge=0)
    vesting_frequency: VestingFrequency = VestingFrequency.ANNUALLY
    milestones: list[VestingMilestoneCreate] = Field(default_factory=list)


class VestingScheduleOut(BaseModel):
    id: UUID
    name: str
    description: str | None = None
    schedule_type: VestingScheduleType
    total_duration_months: int
    cliff_months: int
    vesting_frequency: VestingFrequency
    is_template: bool = True

    class Config:
        from_attributes = True


class VestingScheduleDetail(VestingScheduleOut):
    milestones: list[VestingMilestoneOut] = Field(default_factory=list)
