from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ltip_admin.api import deps
from ltip_admin.core.logging import get_reconciliation_logger
from ltip_admin.models.grant import Grant
from ltip_admin.models.portfolio import Portfolio
from ltip_admin.models.settlement_profile import SettlementProfile
from ltip_admin.models.share_transfer import ShareTransfer
from ltip_admin.models.types import mask_identifier
from ltip_admin.models.vesting_event import VestingEvent
from ltip_admin.schemas.transfers import (
    CompanyPortfolioCreate,
    PortfolioOut,
    PortfolioType,
    TransferDeletionResult,
    TransferResult,
    TransferStatus,
    TransferStep,
    VerificationStatus,
)
from ltip_admin.services import vesting_events
from ltip_admin.services.audit import model_snapshot, record_audit_log
from ltip_admin.services.errors import (
    DestinationUpdateFailed,
    ExerciseRequired,
    InsufficientSourceBalance,
    NotFound,
    PortfolioAlreadyExists,
    PortfolioNotFound,
    SettlementProfileIncomplete,
    SettlementProfileUnverified,
    TransferInProgress,
)

logger = logging.getLogger(__name__)
reconciliation_logger = get_reconciliation_logger()

SETTLEMENT_REQUIRED_FIELDS = (
    "broker_custodian_name",
    "broker_account_number",
    "investor_number",
    "investment_account_number",
)
TRANSFER_NOTE_PREFIX = "Transfer for vesting event"
_NOTE_EVENT_RE = re.compile(r"vesting event ([0-9a-f-]{36})", re.IGNORECASE)
BALANCES_MOVED_STATUSES = (TransferStatus.BALANCES_MOVED.value, TransferStatus.TRANSFERRED.value)
OPEN_TRANSFER_STATUSES = (
    TransferStatus.PENDING.value,
    TransferStatus.BALANCES_MOVED.value,
    TransferStatus.TRANSFERRED.value,
)


@dataclass(frozen=True)
class Balances:
    total_shares: int
    available_shares: int
    locked_shares: int

    @classmethod
    def of(cls, portfolio: Portfolio) -> "Balances":
        return cls(
            total_shares=int(portfolio.total_shares or 0),
            available_shares=int(portfolio.available_shares or 0),
            locked_shares=int(portfolio.locked_shares or 0),
        )


@dataclass
class TransferSaga:
    """Ordered step log for one two-phase balance movement."""

    event_id: UUID
    shares: int
    steps: list[TransferStep] = field(default_factory=list)
    entries: list[dict[str, Any]] = field(default_factory=list)

    def record(self, step: TransferStep, **data: Any) -> None:
        self.steps.append(step)
        entry = {"step": step.value, "at": datetime.now(timezone.utc).isoformat()}
        entry.update({key: str(value) if isinstance(value, UUID) else value for key, value in data.items()})
        self.entries.append(entry)
        logger.debug("Transfer saga for event %s: %s", self.event_id, step.value)

    def as_log(self) -> dict[str, Any]:
        return {"event_id": str(self.event_id), "shares": self.shares, "steps": self.entries}


def debit_balances(source: Balances, shares: int, *, portfolio_id=None) -> Balances:
    if source.available_shares < shares:
        raise InsufficientSourceBalance(
            requested=shares,
            available=source.available_shares,
            portfolio_id=portfolio_id,
        )
    return Balances(
        total_shares=source.total_shares,
        available_shares=source.available_shares - shares,
        locked_shares=source.locked_shares - min(source.locked_shares, shares),
    )


def credit_balances(destination: Balances, shares: int) -> Balances:
    return Balances(
        total_shares=destination.total_shares + shares,
        available_shares=destination.available_shares + shares,
        locked_shares=destination.locked_shares,
    )


def reverse_debit_balances(employee: Balances, shares: int, *, portfolio_id=None) -> Balances:
    if employee.available_shares < shares:
        raise InsufficientSourceBalance(
            requested=shares,
            available=employee.available_shares,
            portfolio_id=portfolio_id,
        )
    return Balances(
        total_shares=employee.total_shares - shares,
        available_shares=employee.available_shares - shares,
        locked_shares=employee.locked_shares,
    )


def reverse_credit_balances(company: Balances, shares: int) -> Balances:
    return Balances(
        total_shares=company.total_shares,
        available_shares=company.available_shares + shares,
        locked_shares=company.locked_shares,
    )


def transfer_note(event_id: UUID) -> str:
    return f"{TRANSFER_NOTE_PREFIX} {event_id}"


def event_id_from_note(notes: str | None) -> UUID | None:
    if not notes:
        return None
    match = _NOTE_EVENT_RE.search(notes)
    if not match:
        return None
    try:
        return UUID(match.group(1))
    except ValueError:
        return None


def missing_settlement_fields(profile: SettlementProfile | None) -> list[str]:
    if profile is None:
        return list(SETTLEMENT_REQUIRED_FIELDS)
    return [name for name in SETTLEMENT_REQUIRED_FIELDS if not (getattr(profile, name) or "").strip()]


async def write_portfolio_balances(db: AsyncSession, portfolio: Portfolio, balances: Balances) -> None:
    """Persist one portfolio's balances in its own commit."""
    portfolio.total_shares = balances.total_shares
    portfolio.available_shares = balances.available_shares
    portfolio.locked_shares = balances.locked_shares
    db.add(portfolio)
    await db.commit()


def _portfolio_out(portfolio: Portfolio, balances: Balances) -> PortfolioOut:
    return PortfolioOut(
        id=portfolio.id,
        portfolio_type=portfolio.portfolio_type,
        employee_id=portfolio.employee_id,
        portfolio_number=portfolio.portfolio_number,
        total_shares=balances.total_shares,
        available_shares=balances.available_shares,
        locked_shares=balances.locked_shares,
    )


async def get_settlement_profile(
    db: AsyncSession, ctx: deps.TenantContext, employee_id: UUID
) -> SettlementProfile | None:
    stmt = select(SettlementProfile).where(
        SettlementProfile.org_id == ctx.org_id, SettlementProfile.employee_id == employee_id
    )
    return (await db.execute(stmt)).scalar_one_or_none()


def ensure_settlement_ready(profile: SettlementProfile | None, employee_id: UUID) -> None:
    missing = missing_settlement_fields(profile)
    if missing:
        raise SettlementProfileIncomplete(employee_id=employee_id, missing_fields=missing)
    if profile.verification_status != VerificationStatus.VERIFIED.value:
        raise SettlementProfileUnverified(
            employee_id=employee_id,
            verification_status=profile.verification_status,
        )


async def get_company_portfolio(db: AsyncSession, ctx: deps.TenantContext) -> Portfolio | None:
    stmt = select(Portfolio).where(
        Portfolio.org_id == ctx.org_id,
        Portfolio.portfolio_type == PortfolioType.COMPANY_RESERVED.value,
    )
    return (await db.execute(stmt)).scalars().first()


async def create_company_portfolio(
    db: AsyncSession,
    ctx: deps.TenantContext,
    payload: CompanyPortfolioCreate,
    *,
    actor_id=None,
) -> Portfolio:
    """Open the single company_reserved portfolio vested shares are paid out of."""
    existing = await get_company_portfolio(db, ctx)
    if existing is not None:
        raise PortfolioAlreadyExists(
            portfolio_type=PortfolioType.COMPANY_RESERVED.value,
            portfolio_id=existing.id,
        )
    portfolio = Portfolio(
        id=uuid4(),
        org_id=ctx.org_id,
        portfolio_type=PortfolioType.COMPANY_RESERVED.value,
        employee_id=None,
        portfolio_number=payload.portfolio_number,
        total_shares=payload.total_shares,
        available_shares=payload.total_shares - payload.locked_shares,
        locked_shares=payload.locked_shares,
    )
    db.add(portfolio)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="portfolio.created",
        resource_type="portfolio",
        resource_id=str(portfolio.id),
        new_value=model_snapshot(portfolio),
    )
    await db.commit()
    logger.info("Created company_reserved portfolio %s", portfolio.portfolio_number)
    return portfolio


async def get_employee_portfolio(
    db: AsyncSession, ctx: deps.TenantContext, employee_id: UUID
) -> Portfolio | None:
    stmt = select(Portfolio).where(
        Portfolio.org_id == ctx.org_id,
        Portfolio.portfolio_type == PortfolioType.EMPLOYEE_VESTED.value,
        Portfolio.employee_id == employee_id,
    )
    return (await db.execute(stmt)).scalars().first()


async def _ensure_employee_portfolio(
    db: AsyncSession, ctx: deps.TenantContext, employee_id: UUID
) -> Portfolio:
    portfolio = await get_employee_portfolio(db, ctx, employee_id)
    if portfolio is not None:
        return portfolio
    portfolio = Portfolio(
        id=uuid4(),
        org_id=ctx.org_id,
        portfolio_type=PortfolioType.EMPLOYEE_VESTED.value,
        employee_id=employee_id,
        portfolio_number=f"EMP-{employee_id.hex[:8].upper()}",
        total_shares=0,
        available_shares=0,
        locked_shares=0,
    )
    db.add(portfolio)
    await db.commit()
    logger.info("Created employee_vested portfolio %s", portfolio.portfolio_number)
    return portfolio


async def list_portfolios(db: AsyncSession, ctx: deps.TenantContext) -> list[Portfolio]:
    stmt = select(Portfolio).where(Portfolio.org_id == ctx.org_id).order_by(Portfolio.portfolio_number)
    return list((await db.execute(stmt)).scalars().all())


async def find_open_transfer(
    db: AsyncSession, ctx: deps.TenantContext, event_id: UUID
) -> ShareTransfer | None:
    stmt = select(ShareTransfer).where(
        ShareTransfer.org_id == ctx.org_id,
        ShareTransfer.vesting_event_id == event_id,
        ShareTransfer.status.in_(OPEN_TRANSFER_STATUSES),
    )
    return (await db.execute(stmt)).scalars().first()


async def open_transfer(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    event: VestingEvent,
    source: Portfolio,
    destination: Portfolio,
    shares: int,
    actor_id=None,
) -> ShareTransfer:
    """Commit a pending transfer row before any balance moves.

    While the row is pending, balances_moved or transferred the event cannot
    be transferred again.
    """
    now = datetime.now(timezone.utc)
    transfer = ShareTransfer(
        id=uuid4(),
        org_id=ctx.org_id,
        transfer_number=f"TR-{now:%Y%m%d}-{uuid4().hex[:8].upper()}",
        grant_id=event.grant_id,
        employee_id=event.employee_id,
        vesting_event_id=event.id,
        from_portfolio_id=source.id,
        to_portfolio_id=destination.id,
        shares_transferred=shares,
        transfer_type="vesting",
        transfer_date=now.date(),
        status=TransferStatus.PENDING.value,
        processed_by=actor_id,
        notes=transfer_note(event.id),
    )
    db.add(transfer)
    await db.commit()
    return transfer


async def _cancel_transfer(db: AsyncSession, transfer: ShareTransfer) -> None:
    transfer.status = TransferStatus.CANCELLED.value
    db.add(transfer)
    await db.commit()


async def record_bookkeeping(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    transfer: ShareTransfer,
    event: VestingEvent,
    actor_id=None,
) -> ShareTransfer:
    """Close the transfer row and flip the event to transferred in one commit."""
    now = datetime.now(timezone.utc)
    transfer.status = TransferStatus.TRANSFERRED.value
    transfer.processed_at = now
    transfer.processed_by = actor_id
    old_event = model_snapshot(event)
    event.status = vesting_events.TRANSFERRED
    event.processed_at = now
    event.processed_by = actor_id
    db.add(transfer)
    db.add(event)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="vesting_event.transferred",
        resource_type="vesting_event",
        resource_id=str(event.id),
        old_value=old_event,
        new_value=model_snapshot(event),
    )
    await db.commit()
    return transfer


async def _move_balances(
    db: AsyncSession,
    saga: TransferSaga,
    *,
    source: Portfolio,
    source_before: Balances,
    source_after: Balances,
    destination: Portfolio,
    destination_after: Balances,
    transfer: ShareTransfer | None = None,
) -> None:
    """Two sequential writes; a failed second write restores the first.

    When ``transfer`` is given it is marked balances_moved in the same commit
    as the destination credit.
    """
    # rollback expires instances, so keep the keys
    source_id = source.id
    destination_id = destination.id
    try:
        await write_portfolio_balances(db, source, source_after)
    except Exception:
        await db.rollback()
        raise
    saga.record(TransferStep.SOURCE_DEBITED, portfolio_id=source_id, **asdict(source_after))

    if transfer is not None:
        transfer.status = TransferStatus.BALANCES_MOVED.value
        db.add(transfer)
    try:
        await write_portfolio_balances(db, destination, destination_after)
    except Exception as exc:
        saga.record(TransferStep.DESTINATION_FAILED, portfolio_id=destination_id, error=str(exc))
        await db.rollback()
        if transfer is not None:
            transfer.status = TransferStatus.PENDING.value
        try:
            await write_portfolio_balances(db, source, source_before)
        except Exception as restore_exc:
            await db.rollback()
            saga.record(TransferStep.COMPENSATION_FAILED, error=str(restore_exc))
            reconciliation_logger.error(
                "Source portfolio %s could not be restored after a failed destination write",
                source_id,
                extra={"saga": saga.as_log()},
            )
            raise DestinationUpdateFailed(
                event_id=saga.event_id,
                source_restored=False,
                steps=[step.value for step in saga.steps],
            ) from exc
        saga.record(TransferStep.SOURCE_RESTORED, portfolio_id=source_id, **asdict(source_before))
        logger.warning("Destination write failed for event %s; source balances restored", saga.event_id)
        raise DestinationUpdateFailed(
            event_id=saga.event_id,
            source_restored=True,
            steps=[step.value for step in saga.steps],
        ) from exc
    saga.record(TransferStep.DESTINATION_CREDITED, portfolio_id=destination_id, **asdict(destination_after))


async def process_transfer(
    db: AsyncSession,
    ctx: deps.TenantContext,
    event_id: UUID,
    *,
    actor_id=None,
) -> TransferResult:
    """Move a vested event's shares from the company reserve to the employee.

    Every precondition is checked before the first balance write, and a
    pending transfer row is committed before it. The two balance writes commit
    separately; if the destination write fails the source is restored, the
    pending row is cancelled and ``DestinationUpdateFailed`` is raised. If the
    final bookkeeping write fails the balances stay moved, the row stays
    balances_moved so the event cannot be transferred twice, and the result is
    flagged ``reconciliation_required``.
    """
    event = await vesting_events.get_event(db, ctx, event_id)
    if event is None:
        raise NotFound("Vesting event not found", event_id=str(event_id))
    vesting_events.ensure_transition(event, vesting_events.TRANSFERRED)
    existing = await find_open_transfer(db, ctx, event.id)
    if existing is not None:
        raise TransferInProgress(
            event_id=event.id,
            transfer_id=existing.id,
            transfer_status=existing.status,
        )

    grant_stmt = select(Grant).where(Grant.id == event.grant_id, Grant.org_id == ctx.org_id)
    grant = (await db.execute(grant_stmt)).scalar_one_or_none()
    if grant is None:
        raise NotFound("Grant not found", grant_id=str(event.grant_id))
    if vesting_events.requires_exercise(grant):
        raise ExerciseRequired(grant_id=grant.id)

    profile = await get_settlement_profile(db, ctx, event.employee_id)
    ensure_settlement_ready(profile, event.employee_id)
    settlement_account = mask_identifier(profile.investment_account_number)

    source = await get_company_portfolio(db, ctx)
    if source is None:
        raise PortfolioNotFound(portfolio_type=PortfolioType.COMPANY_RESERVED.value)

    shares = int(event.shares_to_vest)
    source_before = Balances.of(source)
    source_after = debit_balances(source_before, shares, portfolio_id=source.id)

    destination = await _ensure_employee_portfolio(db, ctx, event.employee_id)
    destination_after = credit_balances(Balances.of(destination), shares)

    transfer = await open_transfer(
        db,
        ctx,
        event=event,
        source=source,
        destination=destination,
        shares=shares,
        actor_id=actor_id,
    )
    transfer_id = transfer.id
    transfer_number = transfer.transfer_number

    saga = TransferSaga(event_id=event.id, shares=shares)
    saga.record(
        TransferStep.VALIDATED,
        source_id=source.id,
        destination_id=destination.id,
        transfer_id=transfer_id,
    )
    try:
        await _move_balances(
            db,
            saga,
            source=source,
            source_before=source_before,
            source_after=source_after,
            destination=destination,
            destination_after=destination_after,
            transfer=transfer,
        )
    except DestinationUpdateFailed as exc:
        # an unrestored source keeps the row pending so retries stay blocked
        if exc.details["source_restored"]:
            await _cancel_transfer(db, transfer)
        raise
    except Exception:
        await _cancel_transfer(db, transfer)
        raise

    source_out = _portfolio_out(source, source_after)
    destination_out = _portfolio_out(destination, destination_after)
    try:
        await record_bookkeeping(db, ctx, transfer=transfer, event=event, actor_id=actor_id)
    except Exception as exc:
        await db.rollback()
        saga.record(TransferStep.BOOKKEEPING_FAILED, error=str(exc))
        reconciliation_logger.warning(
            "Shares moved for vesting event %s but transfer %s was not closed; manual reconciliation required",
            event_id,
            transfer_number,
            extra={"saga": saga.as_log()},
        )
        return TransferResult(
            event_id=event_id,
            transfer_id=transfer_id,
            transfer_number=transfer_number,
            shares_transferred=shares,
            source=source_out,
            destination=destination_out,
            settlement_account=settlement_account,
            steps=saga.steps,
            reconciliation_required=True,
        )

    saga.record(TransferStep.BOOKKEEPING_RECORDED, transfer_id=transfer_id)
    logger.info(
        "Transferred %s shares for vesting event %s as %s",
        shares,
        event_id,
        transfer_number,
    )
    return TransferResult(
        event_id=event_id,
        transfer_id=transfer_id,
        transfer_number=transfer_number,
        shares_transferred=shares,
        source=source_out,
        destination=destination_out,
        settlement_account=settlement_account,
        steps=saga.steps,
    )


async def get_transfer(
    db: AsyncSession, ctx: deps.TenantContext, transfer_id: UUID
) -> ShareTransfer | None:
    stmt = select(ShareTransfer).where(ShareTransfer.id == transfer_id, ShareTransfer.org_id == ctx.org_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_transfers(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    employee_id: UUID | None = None,
    status: str | None = None,
) -> list[ShareTransfer]:
    stmt = select(ShareTransfer).where(ShareTransfer.org_id == ctx.org_id)
    if employee_id is not None:
        stmt = stmt.where(ShareTransfer.employee_id == employee_id)
    if status is not None:
        stmt = stmt.where(ShareTransfer.status == status)
    stmt = stmt.order_by(ShareTransfer.transfer_date.desc())
    return list((await db.execute(stmt)).scalars().all())


async def locate_originating_event(
    db: AsyncSession, ctx: deps.TenantContext, transfer: ShareTransfer
) -> tuple[VestingEvent | None, str | None]:
    """Back-reference first, then the note, then a (grant, employee, shares, transferred) match."""
    if transfer.vesting_event_id is not None:
        event = await vesting_events.get_event(db, ctx, transfer.vesting_event_id)
        if event is not None:
            return event, "back_reference"

    note_event_id = event_id_from_note(transfer.notes)
    if note_event_id is not None:
        event = await vesting_events.get_event(db, ctx, note_event_id)
        if event is not None:
            return event, "note"

    if transfer.grant_id is None or transfer.employee_id is None:
        return None, None
    stmt = select(VestingEvent).where(
        VestingEvent.org_id == ctx.org_id,
        VestingEvent.grant_id == transfer.grant_id,
        VestingEvent.employee_id == transfer.employee_id,
        VestingEvent.shares_to_vest == transfer.shares_transferred,
        VestingEvent.status == vesting_events.TRANSFERRED,
    )
    candidates = (await db.execute(stmt)).scalars().all()
    if not candidates:
        return None, None
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    latest = max(candidates, key=lambda e: e.processed_at or epoch)
    return latest, "match"


async def _reverse_balances(
    db: AsyncSession, ctx: deps.TenantContext, transfer: ShareTransfer, event_id: UUID | None
) -> None:
    stmt = select(Portfolio).where(
        Portfolio.org_id == ctx.org_id,
        Portfolio.id.in_([transfer.from_portfolio_id, transfer.to_portfolio_id]),
    )
    by_id = {portfolio.id: portfolio for portfolio in (await db.execute(stmt)).scalars().all()}
    company = by_id.get(transfer.from_portfolio_id)
    employee = by_id.get(transfer.to_portfolio_id)
    if company is None:
        raise PortfolioNotFound(portfolio_type=PortfolioType.COMPANY_RESERVED.value)
    if employee is None:
        raise PortfolioNotFound(portfolio_type=PortfolioType.EMPLOYEE_VESTED.value, employee_id=transfer.employee_id)

    shares = int(transfer.shares_transferred)
    employee_before = Balances.of(employee)
    employee_after = reverse_debit_balances(employee_before, shares, portfolio_id=employee.id)
    company_after = reverse_credit_balances(Balances.of(company), shares)

    saga = TransferSaga(event_id=event_id or transfer.id, shares=shares)
    saga.record(TransferStep.VALIDATED, source_id=employee.id, destination_id=company.id)
    await _move_balances(
        db,
        saga,
        source=employee,
        source_before=employee_before,
        source_after=employee_after,
        destination=company,
        destination_after=company_after,
    )


async def delete_transfer(
    db: AsyncSession,
    ctx: deps.TenantContext,
    transfer_id: UUID,
    *,
    reverse_balances: bool = False,
    actor_id=None,
) -> TransferDeletionResult:
    """Void a transfer and put its originating event back to vested.

    Portfolio balances stay where they are unless ``reverse_balances`` is set,
    in which case the shares move back to the company reserve first. Only
    transferred and balances_moved rows have balances to reverse; deleting a
    stuck row also frees its event for another transfer attempt.
    """
    transfer = await get_transfer(db, ctx, transfer_id)
    if transfer is None:
        raise NotFound("Transfer not found", transfer_id=str(transfer_id))

    event, located_by = await locate_originating_event(db, ctx, transfer)

    balances_reversed = False
    if reverse_balances and transfer.status in BALANCES_MOVED_STATUSES:
        await _reverse_balances(db, ctx, transfer, event.id if event is not None else None)
        balances_reversed = True

    old_snapshot = model_snapshot(transfer)
    await db.delete(transfer)

    event_reverted = False
    warning = None
    if event is not None and vesting_events.can_transition(event.status, vesting_events.VESTED):
        event.status = vesting_events.VESTED
        db.add(event)
        event_reverted = True
    elif event is None:
        warning = (
            "Transfer deleted but the related vesting event could not be found; "
            "update the vesting event status manually"
        )
        reconciliation_logger.warning(
            "Transfer %s deleted without a matching vesting event",
            transfer.transfer_number,
            extra={"saga": {"transfer_id": str(transfer_id), "balances_reversed": balances_reversed}},
        )

    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="share_transfer.deleted",
        resource_type="share_transfer",
        resource_id=str(transfer_id),
        old_value=old_snapshot,
        new_value={
            "vesting_event_id": str(event.id) if event is not None else None,
            "event_reverted": event_reverted,
            "balances_reversed": balances_reversed,
        },
    )
    await db.commit()
    return TransferDeletionResult(
        transfer_id=transfer_id,
        vesting_event_id=event.id if event is not None else None,
        event_reverted=event_reverted,
        balances_reversed=balances_reversed,
        located_by=located_by,
        warning=warning,
    )
