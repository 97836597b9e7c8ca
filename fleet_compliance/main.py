import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import inspect

import structlog

from .config import settings
from .db import Base, engine
from .errors import register_exception_handlers
from .logging import setup_logging, RequestIdMiddleware
from .models import models  # noqa: F401  (registers tables on Base.metadata)
from .ratelimit import limiter
from .routes.appointments import router as appointments_router
from .routes.audit import router as audit_router
from .routes.compliance import router as compliance_router
from .routes.documents import requirements_router, router as subject_documents_router
from .routes.files import router as files_router
from .routes.holds import router as holds_router
from .routes.incidents import router as incidents_router
from .routes.notifications import router as notifications_router
from .routes.public import router as public_router

log = structlog.get_logger("fleet_compliance.startup")


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
    register_exception_handlers(app)

    # Routers
    app.include_router(holds_router)
    app.include_router(notifications_router)
    app.include_router(appointments_router)
    app.include_router(public_router)
    app.include_router(compliance_router)
    app.include_router(requirements_router)
    app.include_router(subject_documents_router)
    app.include_router(incidents_router)
    app.include_router(files_router)
    app.include_router(audit_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.on_event("startup")
    def _startup():
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if not settings.auto_create_db:
            return
        existing = set(inspect(engine).get_table_names())
        missing = set(Base.metadata.tables.keys()) - existing
        if missing:
            log.info("creating_tables", tables=sorted(missing))
            Base.metadata.create_all(bind=engine)

    return app


app = create_app()
