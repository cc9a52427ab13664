from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ltip_admin.api import deps
from ltip_admin.core.errors import to_http_exception
from ltip_admin.db.session import get_db
from ltip_admin.schemas.transfers import (
    CompanyPortfolioCreate,
    PortfolioOut,
    ShareTransferOut,
    TransferDeletionResult,
    TransferStatus,
)
from ltip_admin.services import share_transfers
from ltip_admin.services.errors import LedgerError

router = APIRouter(tags=["share-transfers"])


@router.get("/share-transfers", response_model=list[ShareTransferOut], summary="List share transfers")
async def list_transfers(
    employee_id: UUID | None = Query(None),
    transfer_status: TransferStatus | None = Query(None, alias="status"),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> list[ShareTransferOut]:
    transfers = await share_transfers.list_transfers(
        db,
        ctx,
        employee_id=employee_id,
        status=transfer_status.value if transfer_status else None,
    )
    return [ShareTransferOut.model_validate(transfer) for transfer in transfers]


@router.delete(
    "/share-transfers/{transfer_id}",
    response_model=TransferDeletionResult,
    summary="Void a transfer and revert its vesting event",
)
async def delete_transfer(
    transfer_id: UUID,
    reverse_balances: bool = Query(False),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> TransferDeletionResult:
    try:
        return await share_transfers.delete_transfer(
            db,
            ctx,
            transfer_id,
            reverse_balances=reverse_balances,
            actor_id=actor_id,
        )
    except LedgerError as exc:
        raise to_http_exception(exc) from exc


@router.get("/portfolios", response_model=list[PortfolioOut], summary="List share portfolios")
async def list_portfolios(
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> list[PortfolioOut]:
    portfolios = await share_transfers.list_portfolios(db, ctx)
    return [PortfolioOut.model_validate(portfolio) for portfolio in portfolios]


@router.post(
    "/portfolios/company",
    response_model=PortfolioOut,
    status_code=status.HTTP_201_CREATED,
    summary="Open the company_reserved portfolio",
)
async def create_company_portfolio(
    payload: CompanyPortfolioCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> PortfolioOut:
    try:
        portfolio = await share_transfers.create_company_portfolio(db, ctx, payload, actor_id=actor_id)
    except LedgerError as exc:
        raise to_http_exception(exc) from exc
    return PortfolioOut.model_validate(portfolio)
