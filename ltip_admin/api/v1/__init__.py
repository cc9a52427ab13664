from fastapi import APIRouter

from ltip_admin.api.v1.routers import (
    grants,
    health,
    incentive_plans,
    ledger_stats,
    ltip_pools,
    performance_metrics,
    settlement_profiles,
    share_transfers,
    vesting_events,
    vesting_schedules,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(ltip_pools.router)
api_router.include_router(incentive_plans.router)
api_router.include_router(grants.router)
api_router.include_router(vesting_events.router)
api_router.include_router(share_transfers.router)
api_router.include_router(ledger_stats.router)
api_router.include_router(performance_metrics.router)
api_router.include_router(vesting_schedules.router)
api_router.include_router(settlement_profiles.router)

__all__ = ["api_router"]
