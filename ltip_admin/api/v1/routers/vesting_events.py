from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ltip_admin.api import deps
from ltip_admin.core.errors import to_http_exception
from ltip_admin.db.session import get_db
from ltip_admin.schemas.transfers import TransferResult
from ltip_admin.schemas.vesting import (
    ConfirmPerformanceRequest,
    EventClosureRequest,
    SettleEventRequest,
    SweepResult,
    VestingEventOut,
    VestingEventStatus,
)
from ltip_admin.services import vesting_events
from ltip_admin.services.errors import LedgerError

router = APIRouter(prefix="/vesting-events", tags=["vesting-events"])


@router.get("", response_model=list[VestingEventOut], summary="List vesting events")
async def list_events(
    grant_id: UUID | None = Query(None),
    employee_id: UUID | None = Query(None),
    event_status: VestingEventStatus | None = Query(None, alias="status"),
    as_of: date | None = Query(None),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> list[VestingEventOut]:
    events = await vesting_events.list_events(
        db,
        ctx,
        grant_id=grant_id,
        employee_id=employee_id,
        status=event_status.value if event_status else None,
        as_of=as_of,
    )
    return [VestingEventOut.model_validate(event) for event in events]


@router.post("/sweep", response_model=SweepResult, summary="Mark past-dated pending events as due")
async def sweep(
    as_of: date | None = Query(None),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> SweepResult:
    as_of_date = as_of or date.today()
    updated = await vesting_events.sweep_due_events(db, ctx, as_of_date)
    return SweepResult(as_of=as_of_date, updated=updated)


@router.get("/{event_id}", response_model=VestingEventOut, summary="Get a vesting event")
async def get_event(
    event_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> VestingEventOut:
    event = await vesting_events.get_event(db, ctx, event_id)
    if not event:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vesting event not found")
    return VestingEventOut.model_validate(event)


@router.post("/{event_id}/settle", response_model=VestingEventOut, summary="Settle a due event")
async def settle_event(
    event_id: UUID,
    payload: SettleEventRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> VestingEventOut:
    try:
        event = await vesting_events.settle_event(
            db,
            ctx,
            event_id,
            payload.confirmations,
            payload.notes,
            actor_id=actor_id,
        )
    except LedgerError as exc:
        raise to_http_exception(exc) from exc
    return VestingEventOut.model_validate(event)


@router.post(
    "/{event_id}/performance-confirmation",
    response_model=VestingEventOut,
    summary="Confirm performance metrics and settle the event",
)
async def confirm_performance(
    event_id: UUID,
    payload: ConfirmPerformanceRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> VestingEventOut:
    try:
        event = await vesting_events.confirm_performance_metrics(
            db,
            ctx,
            event_id,
            payload.confirmations,
            payload.notes,
            actor_id=actor_id,
        )
    except LedgerError as exc:
        raise to_http_exception(exc) from exc
    return VestingEventOut.model_validate(event)


@router.post("/{event_id}/exercise", response_model=VestingEventOut, summary="Exercise a vested option event")
async def exercise_event(
    event_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> VestingEventOut:
    try:
        event = await vesting_events.exercise_event(db, ctx, event_id, actor_id=actor_id)
    except LedgerError as exc:
        raise to_http_exception(exc) from exc
    return VestingEventOut.model_validate(event)


@router.post(
    "/{event_id}/transfer",
    response_model=TransferResult,
    summary="Transfer a vested event's shares to the employee portfolio",
)
async def transfer_event(
    event_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> TransferResult:
    try:
        return await vesting_events.transfer_event(db, ctx, event_id, actor_id=actor_id)
    except LedgerError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{event_id}/forfeit", response_model=VestingEventOut, summary="Forfeit an open event")
async def forfeit_event(
    event_id: UUID,
    payload: EventClosureRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> VestingEventOut:
    try:
        event = await vesting_events.forfeit_event(db, ctx, event_id, payload.reason, actor_id=actor_id)
    except LedgerError as exc:
        raise to_http_exception(exc) from exc
    return VestingEventOut.model_validate(event)


@router.post("/{event_id}/cancel", response_model=VestingEventOut, summary="Cancel an open event")
async def cancel_event(
    event_id: UUID,
    payload: EventClosureRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> VestingEventOut:
    try:
        event = await vesting_events.cancel_event(db, ctx, event_id, payload.reason, actor_id=actor_id)
    except LedgerError as exc:
        raise to_http_exception(exc) from exc
    return VestingEventOut.model_validate(event)
