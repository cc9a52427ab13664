from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ltip_admin.api.v1 import api_router
from ltip_admin.core.errors import register_exception_handlers
from ltip_admin.core.health import APP_VERSION
from ltip_admin.core.logging import configure_logging
from ltip_admin.core.response_envelope import register_response_envelope
from ltip_admin.core.settings import settings
from ltip_admin.events import register_event_handlers
from ltip_admin.middlewares.request_context import RequestContextMiddleware


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="LTIP Admin", version=APP_VERSION)
    register_exception_handlers(app)
    register_response_envelope(app)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(api_router, prefix="/api/v1")
    register_event_handlers(app)
    return app


app = create_app()
