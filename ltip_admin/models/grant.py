import uuid

from sqlalchemy import (
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


class Grant(Base):
    __tablename__ = "grants"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("total_shares >= 0", name="ck_grants_total_shares_nonnegative"),
        CheckConstraint(
            "exercise_price IS NULL OR exercise_price >= 0",
            name="ck_grants_exercise_price_nonnegative",
        ),
        UniqueConstraint("org_id", "grant_number", name="uq_grants_org_number"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, nullable=False, index=True)
    plan_id = Column(
        UUID(as_uuid=True),
        ForeignKey("incentive_plans.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    employee_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    grant_number = Column(String(50), nullable=False)
    grant_date = Column(Date, nullable=False)
    vesting_start_date = Column(Date, nullable=False)
    total_shares = Column(BigInteger, nullable=False)
    exercise_price = Column(Numeric(18, 6), nullable=True)
    status = Column(String(30), nullable=False, default="pending_signature")
    employee_acceptance_at = Column(DateTime(timezone=True), nullable=True)
    vesting_schedule_id = Column(
        UUID(as_uuid=True),
        ForeignKey("vesting_schedules.id", ondelete="SET NULL"),
        nullable=True,
    )
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    vesting_events = relationship(
        "VestingEvent",
        back_populates="grant",
        cascade="all, delete-orphan",
        order_by="VestingEvent.sequence_number",
    )
