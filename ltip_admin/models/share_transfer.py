import uuid

from sqlalchemy import BigInteger, CheckConstraint, Column, Date, DateTime, ForeignKey, Index, String, Text, func, text
from sqlalchemy.dialects.postgresql import UUID

from ltip_admin.db.base import Base


class ShareTransfer(Base):
    __tablename__ = "share_transfers"
    __table_args__ = (
        CheckConstraint("shares_transferred > 0", name="ck_share_transfers_shares_positive"),
        # one live transfer per vesting event; cancelled rows do not count
        Index(
            "uq_share_transfers_open_event",
            "vesting_event_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'balances_moved', 'transferred')"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, nullable=False, index=True)
    transfer_number = Column(String(64), nullable=False, unique=True)
    grant_id = Column(
        UUID(as_uuid=True),
        ForeignKey("grants.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    employee_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    vesting_event_id = Column(
        UUID(as_uuid=True),
        ForeignKey("vesting_events.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    from_portfolio_id = Column(UUID(as_uuid=True), ForeignKey("portfolios.id"), nullable=False)
    to_portfolio_id = Column(UUID(as_uuid=True), ForeignKey("portfolios.id"), nullable=False)
    shares_transferred = Column(BigInteger, nullable=False)
    transfer_type = Column(String(30), nullable=False, default="vesting")
    transfer_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    processed_at = Column(DateTime(timezone=True), nullable=True)
    processed_by = Column(UUID(as_uuid=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
