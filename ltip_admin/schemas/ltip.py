from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class PoolType(str, Enum):
    GENERAL = "general"
    EXECUTIVE = "executive"
    EMPLOYEE = "employee"
    RETENTION = "retention"
    PERFORMANCE = "performance"


class PoolStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXHAUSTED = "exhausted"


class PlanType(str, Enum):
    LTIP_RSU = "LTIP_RSU"
    LTIP_RSA = "LTIP_RSA"
    ESOP = "ESOP"


class VestingScheduleType(str, Enum):
    TIME_BASED = "time_based"
    PERFORMANCE_BASED = "performance_based"
    HYBRID = "hybrid"


class VestingFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"


class PlanStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    CLOSED = "closed"
    SUSPENDED = "suspended"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class GrantStatus(str, Enum):
    DRAFT = "draft"
    PENDING_SIGNATURE = "pending_signature"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FORFEITED = "forfeited"


class VestingConfig(BaseModel):
    duration_months: int = Field(ge=1)
    cliff_months: int = Field(default=0, ge=0)
    frequency: VestingFrequency = VestingFrequency.ANNUALLY

    @model_validator(mode="after")
    def _cliff_within_duration(self) -> "VestingConfig":
        if self.cliff_months > self.duration_months:
            raise ValueError("cliff_months cannot exceed duration_months")
        return self


class LtipPoolCreate(BaseModel):
    pool_code: str = Field(min_length=1, max_length=50)
    pool_name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    pool_type: PoolType = PoolType.GENERAL
    total_shares_allocated: int = Field(ge=0)


class LtipPoolResize(BaseModel):
    total_shares_allocated: int = Field(ge=0)


class LtipPoolOut(BaseModel):
    id: UUID
    org_id: str
    pool_code: str
    pool_name: str
    description: str | None = None
    pool_type: PoolType
    total_shares_allocated: int
    shares_used: int
    shares_available: int
    status: PoolStatus

    class Config:
        from_attributes = True


class IncentivePlanCreate(BaseModel):
    ltip_pool_id: UUID
    plan_code: str = Field(min_length=1, max_length=50)
    plan_name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    plan_type: PlanType = PlanType.LTIP_RSU
    vesting_schedule_type: VestingScheduleType = VestingScheduleType.TIME_BASED
    vesting_config: VestingConfig | None = None
    vesting_schedule_id: UUID | None = None
    exercise_price: Decimal | None = Field(default=None, ge=0)
    total_shares_allocated: int = Field(ge=0)
    start_date: date | None = None
    end_date: date | None = None

    @model_validator(mode="after")
    def _esop_requires_price(self) -> "IncentivePlanCreate":
        if self.plan_type == PlanType.ESOP and self.exercise_price is None:
            raise ValueError("ESOP plans require an exercise_price")
        return self


class IncentivePlanResize(BaseModel):
    total_shares_allocated: int = Field(ge=0)


class IncentivePlanOut(BaseModel):
    id: UUID
    org_id: str
    ltip_pool_id: UUID
    plan_code: str
    plan_name: str
    plan_type: PlanType
    vesting_schedule_type: VestingScheduleType
    vesting_config: dict | None = None
    vesting_schedule_id: UUID | None = None
    exercise_price: Decimal | None = None
    total_shares_allocated: int
    shares_granted: int
    shares_available: int
    status: PlanStatus
    approval_status: ApprovalStatus

    class Config:
        from_attributes = True


class GrantCreate(BaseModel):
    plan_id: UUID
    employee_id: UUID
    grant_number: str | None = Field(default=None, max_length=50)
    grant_date: date
    vesting_start_date: date | None = None
    total_shares: int = Field(gt=0)
    exercise_price: Decimal | None = Field(default=None, ge=0)
    vesting_schedule_id: UUID | None = None
    performance_metric_ids: list[UUID] = Field(default_factory=list)
    status: GrantStatus = GrantStatus.PENDING_SIGNATURE
    employee_acceptance_at: datetime | None = None
    notes: str | None = None


class GrantAcceptance(BaseModel):
    accepted_at: datetime | None = None


class GrantOut(BaseModel):
    id: UUID
    org_id: str
    plan_id: UUID
    employee_id: UUID
    grant_number: str
    grant_date: date
    vesting_start_date: date
    total_shares: int
    exercise_price: Decimal | None = None
    status: GrantStatus
    employee_acceptance_at: datetime | None = None
    vesting_schedule_id: UUID | None = None
    notes: str | None = None

    class Config:
        from_attributes = True
