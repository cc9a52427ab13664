import uuid

from sqlalchemy import Column, DateTime, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from ltip_admin.db.base import Base
from ltip_admin.models.types import EncryptedString


class SettlementProfile(Base):
    __tablename__ = "settlement_profiles"
    __allow_unmapped__ = True
    __table_args__ = (
        UniqueConstraint("org_id", "employee_id", name="uq_settlement_profiles_employee"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, nullable=False, index=True)
    employee_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    broker_custodian_name = Column(String(255), nullable=True)
    broker_account_number = Column(EncryptedString(), nullable=True)
    investor_number = Column(EncryptedString(), nullable=True)
    investment_account_number = Column(EncryptedString(), nullable=True)
    iban = Column(EncryptedString(), nullable=True)
    bank_name = Column(String(255), nullable=True)
    verification_status = Column(String(20), nullable=False, default="pending")
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
