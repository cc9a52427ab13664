import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from ltip_admin.db.base import Base


class PerformanceMetric(Base):
    __tablename__ = "performance_metrics"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    metric_type = Column(String(50), nullable=True)
    unit_of_measure = Column(String(50), nullable=True)
    target_value = Column(Numeric(20, 4), nullable=True)
    actual_value = Column(Numeric(20, 4), nullable=True)
    is_achieved = Column(Boolean, nullable=False, default=False)
    achieved_at = Column(DateTime(timezone=True), nullable=True)
    confirmation_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class GrantPerformanceMetric(Base):
    __tablename__ = "grant_performance_metrics"
    __table_args__ = (
        UniqueConstraint("grant_id", "performance_metric_id", name="uq_grant_performance_metrics_pair"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, nullable=False, index=True)
    grant_id = Column(
        UUID(as_uuid=True),
        ForeignKey("grants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    performance_metric_id = Column(
        UUID(as_uuid=True),
        ForeignKey("performance_metrics.id", ondelete="CASCADE"),
        nullable=False,
    )
