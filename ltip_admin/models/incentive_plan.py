import uuid

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ltip_admin.db.base import Base


class IncentivePlan(Base):
    __tablename__ = "incentive_plans"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("total_shares_allocated >= 0", name="ck_incentive_plans_total_nonnegative"),
        CheckConstraint("shares_granted <= total_shares_allocated", name="ck_incentive_plans_granted_floor"),
        UniqueConstraint("org_id", "plan_code", name="uq_incentive_plans_org_code"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, nullable=False, index=True)
    ltip_pool_id = Column(
        UUID(as_uuid=True),
        ForeignKey("ltip_pools.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    plan_code = Column(String(50), nullable=False)
    plan_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    plan_type = Column(String(20), nullable=False, default="LTIP_RSU")
    vesting_schedule_type = Column(String(30), nullable=False, default="time_based")
    vesting_config = Column(JSON, nullable=True)
    vesting_schedule_id = Column(
        UUID(as_uuid=True),
        ForeignKey("vesting_schedules.id", ondelete="SET NULL"),
        nullable=True,
    )
    exercise_price = Column(Numeric(18, 6), nullable=True)
    total_shares_allocated = Column(BigInteger, nullable=False)
    shares_granted = Column(BigInteger, nullable=False, default=0)
    shares_available = Column(BigInteger, nullable=False, default=0)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default="draft")
    approval_status = Column(String(20), nullable=False, default="pending")
    approved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    pool = relationship("LtipPool", back_populates="plans")
