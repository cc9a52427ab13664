import uuid

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID

from ltip_admin.db.base import Base


class Portfolio(Base):
    __tablename__ = "portfolios"
    __table_args__ = (
        CheckConstraint("available_shares <= total_shares", name="ck_portfolios_available_le_total"),
        CheckConstraint("available_shares >= 0", name="ck_portfolios_available_nonnegative"),
        CheckConstraint("locked_shares >= 0", name="ck_portfolios_locked_nonnegative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, nullable=False, index=True)
    portfolio_type = Column(String(30), nullable=False)
    employee_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    portfolio_number = Column(String(64), nullable=False)
    total_shares = Column(BigInteger, nullable=False, default=0)
    available_shares = Column(BigInteger, nullable=False, default=0)
    locked_shares = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
