import logging

from fastapi import FastAPI

from ltip_admin.core.settings import settings
from ltip_admin.db.session import engine

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info(
            "Application startup (tenancy_mode=%s, sweep_on_read=%s)",
            settings.tenancy_mode,
            settings.vesting_sweep_on_read,
        )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Application shutdown")
        await engine.dispose()
