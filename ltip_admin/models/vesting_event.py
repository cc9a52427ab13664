import uuid

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ltip_admin.db.base import Base


class VestingEvent(Base):
    __tablename__ = "vesting_events"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("shares_to_vest >= 0", name="ck_vesting_events_shares_nonnegative"),
        UniqueConstraint("grant_id", "sequence_number", name="uq_vesting_events_grant_sequence"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, nullable=False, index=True)
    grant_id = Column(
        UUID(as_uuid=True),
        ForeignKey("grants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    sequence_number = Column(Integer, nullable=False)
    vesting_date = Column(Date, nullable=False, index=True)
    shares_to_vest = Column(BigInteger, nullable=False)
    cumulative_shares_vested = Column(BigInteger, nullable=False, default=0)
    event_type = Column(String(20), nullable=False, default="time_based")
    status = Column(String(20), nullable=False, default="pending", index=True)
    performance_metric_id = Column(
        UUID(as_uuid=True),
        ForeignKey("performance_metrics.id", ondelete="SET NULL"),
        nullable=True,
    )
    vesting_milestone_id = Column(
        UUID(as_uuid=True),
        ForeignKey("vesting_milestones.id", ondelete="SET NULL"),
        nullable=True,
    )
    performance_condition_met = Column(Boolean, nullable=False, default=False)
    performance_notes = Column(Text, nullable=True)
    exercise_price = Column(Numeric(18, 6), nullable=True)
    total_exercise_cost = Column(Numeric(20, 6), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    processed_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    grant = relationship("Grant", back_populates="vesting_events")
