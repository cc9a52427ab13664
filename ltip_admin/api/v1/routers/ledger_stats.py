from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ltip_admin.api import deps
from ltip_admin.db.session import get_db
from ltip_admin.schemas.vesting import CompanyLedgerStats
from ltip_admin.services import ledger_stats

router = APIRouter(prefix="/ledger", tags=["ledger"])


@router.get(
    "/stats",
    response_model=CompanyLedgerStats,
    summary="Company roll-up counters and reconciliation discrepancies",
)
async def company_stats(
    as_of: date | None = Query(None),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> CompanyLedgerStats:
    return await ledger_stats.get_company_stats(db, ctx, as_of)
