"""Application wiring for the lab stock service.

Brings together configuration, logging, database setup, the API routers and
error handling. Run it with ``uvicorn labstock.main:app``.
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from .core.config import settings
from .core.errors import register_exception_handlers
from .core.logging import setup_logging
from .db.session import Base, engine
from .middlewares import RequestIdMiddleware
from .routers import (
    api_auth,
    api_categories,
    api_consumables,
    api_people,
    api_reports,
    api_transactions,
    api_vendors,
)

# Importing the models registers every table with ``Base.metadata``.
from . import models as _models  # noqa: F401

setup_logging(settings.LOG_LEVEL, service=settings.APP_NAME, env=settings.APP_ENV)

app = FastAPI(title=settings.APP_NAME)

if settings.ALLOWED_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
app.add_middleware(RequestIdMiddleware)

register_exception_handlers(app)

for module in (api_auth, api_people, api_vendors, api_categories, api_consumables, api_transactions, api_reports):
    app.include_router(module.router)

Instrumentator().instrument(app).expose(app, include_in_schema=False)


@app.on_event("startup")
def _create_tables() -> None:
    # New databases get their tables here; there is no migration history yet.
    Base.metadata.create_all(bind=engine)


@app.get("/health")
def health() -> dict[str, bool]:
    return {"ok": True}


__all__ = ["app"]
