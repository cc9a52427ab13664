from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class PortfolioType(str, Enum):
    COMPANY_RESERVED = "company_reserved"
    EMPLOYEE_VESTED = "employee_vested"


class TransferStatus(str, Enum):
    PENDING = "pending"
    BALANCES_MOVED = "balances_moved"
    TRANSFERRED = "transferred"
    CANCELLED = "cancelled"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class TransferStep(str, Enum):
    VALIDATED = "validated"
    SOURCE_DEBITED = "source_debited"
    DESTINATION_FAILED = "destination_failed"
    SOURCE_RESTORED = "source_restored"
    COMPENSATION_FAILED = "compensation_failed"
    DESTINATION_CREDITED = "destination_credited"
    BOOKKEEPING_RECORDED = "bookkeeping_recorded"
    BOOKKEEPING_FAILED = "bookkeeping_failed"


class PortfolioOut(BaseModel):
    id: UUID
    portfolio_type: PortfolioType
    employee_id: UUID | None = None
    portfolio_number: str
    total_shares: int
    available_shares: int
    locked_shares: int

    class Config:
        from_attributes = True


class ShareTransferOut(BaseModel):
    id: UUID
    transfer_number: str
    grant_id: UUID | None = None
    employee_id: UUID | None = None
    vesting_event_id: UUID | None = None
    from_portfolio_id: UUID
    to_portfolio_id: UUID
    shares_transferred: int
    transfer_type: str
    transfer_date: date
    status: TransferStatus
    processed_at: datetime | None = None
    notes: str | None = None

    class Config:
        from_attributes = True


class TransferResult(BaseModel):
    event_id: UUID
    transfer_id: UUID | None = None
    transfer_number: str | None = None
    shares_transferred: int
    source: PortfolioOut
    destination: PortfolioOut
    settlement_account: str | None = None
    steps: list[TransferStep] = Field(default_factory=list)
    reconciliation_required: bool = False


class TransferDeletionResult(BaseModel):
    transfer_id: UUID
    vesting_event_id: UUID | None = None
    event_reverted: bool = False
    balances_reversed: bool = False
    located_by: str | None = None
    warning: str | None = None


class CompanyPortfolioCreate(BaseModel):
    portfolio_number: str = Field(min_length=1, max_length=64)
    total_shares: int = Field(ge=0)
    locked_shares: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _locked_within_total(self) -> "CompanyPortfolioCreate":
        if self.locked_shares > self.total_shares:
            raise ValueError("locked_shares cannot exceed total_shares")
        return self


class SettlementProfileUpsert(BaseModel):
    broker_custodian_name: str | None = Field(default=None, max_length=255)
    broker_account_number: str | None = None
    investor_number: str | None = None
    investment_account_number: str | None = None
    iban: str | None = None
    bank_name: str | None = Field(default=None, max_length=255)


class SettlementProfileVerification(BaseModel):
    verification_status: VerificationStatus

    @model_validator(mode="after")
    def _decided(self) -> "SettlementProfileVerification":
        if self.verification_status == VerificationStatus.PENDING:
            raise ValueError("verification_status must be verified or rejected")
        return self


class SettlementProfileOut(BaseModel):
    """Account identifiers are only ever returned masked."""

    id: UUID
    employee_id: UUID
    broker_custodian_name: str | None = None
    broker_account_number: str | None = None
    investor_number: str | None = None
    investment_account_number: str | None = None
    iban: str | None = None
    bank_name: str | None = None
    verification_status: VerificationStatus
    verified_at: datetime | None = None
    missing_fields: list[str] = Field(default_factory=list)
