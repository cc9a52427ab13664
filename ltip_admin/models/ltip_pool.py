import uuid

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ltip_admin.db.base import Base


class LtipPool(Base):
    __tablename__ = "ltip_pools"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("total_shares_allocated >= 0", name="ck_ltip_pools_total_nonnegative"),
        CheckConstraint("shares_used >= 0", name="ck_ltip_pools_used_nonnegative"),
        CheckConstraint(
            "shares_used + shares_available = total_shares_allocated",
            name="ck_ltip_pools_conservation",
        ),
        UniqueConstraint("org_id", "pool_code", name="uq_ltip_pools_org_code"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, nullable=False, index=True)
    pool_code = Column(String(50), nullable=False)
    pool_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    pool_type = Column(String(50), nullable=False, default="general")
    total_shares_allocated = Column(BigInteger, nullable=False)
    shares_used = Column(BigInteger, nullable=False, default=0)
    shares_available = Column(BigInteger, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    plans = relationship("IncentivePlan", back_populates="pool")
