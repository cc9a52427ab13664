from fastapi import APIRouter

from ltip_admin.core.health import live_payload, ready_payload

router = APIRouter(tags=["health"])


@router.get("/health/live", summary="Service liveness check")
async def health_live() -> dict:
    return await live_payload()


@router.get("/health/ready", summary="Service readiness check")
async def health_ready() -> dict:
    return await ready_payload()


@router.get("/health", summary="Readiness check alias")
async def read_health() -> dict:
    return await ready_payload()
