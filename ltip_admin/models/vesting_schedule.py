import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
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


class VestingSchedule(Base):
    __tablename__ = "vesting_schedules"
    __allow_unmapped__ = True

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    schedule_type = Column(String(30), nullable=False, default="time_based")
    total_duration_months = Column(Integer, nullable=False, default=48)
    cliff_months = Column(Integer, nullable=False, default=12)
    vesting_frequency = Column(String(20), nullable=False, default="annually")
    is_template = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    milestones = relationship(
        "VestingMilestone",
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="VestingMilestone.sequence_order",
    )


class VestingMilestone(Base):
    __tablename__ = "vesting_milestones"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint(
            "vesting_percentage >= 0 AND vesting_percentage <= 100",
            name="ck_vesting_milestones_percentage_range",
        ),
        UniqueConstraint("vesting_schedule_id", "sequence_order", name="uq_vesting_milestones_order"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, nullable=False, index=True)
    vesting_schedule_id = Column(
        UUID(as_uuid=True),
        ForeignKey("vesting_schedules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    milestone_type = Column(String(20), nullable=False, default="time")
    sequence_order = Column(Integer, nullable=False)
    vesting_percentage = Column(Numeric(9, 4), nullable=False)
    months_from_start = Column(Integer, nullable=False)
    performance_metric_id = Column(
        UUID(as_uuid=True),
        ForeignKey("performance_metrics.id", ondelete="SET NULL"),
        nullable=True,
    )
    target_value = Column(Numeric(20, 4), nullable=True)
    actual_value = Column(Numeric(20, 4), nullable=True)
    is_achieved = Column(Boolean, nullable=False, default=False)
    achieved_at = Column(DateTime(timezone=True), nullable=True)

    schedule = relationship("VestingSchedule", back_populates="milestones")
