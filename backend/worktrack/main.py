"""ASGI entrypoint: ``uvicorn worktrack.main:app``."""

from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from worktrack.core.errors import WorktrackError
from worktrack.core.logging import RequestLoggingMiddleware, configure_logging
from worktrack.core.observability import PrometheusMiddleware, metrics_endpoint, update_sync_queue_metrics
from worktrack.core.settings import Settings, settings
from worktrack.db.session import get_db
from worktrack.modules.router_registry import include_all_routers
from worktrack.services.sync import global_queue_counts

LOCAL_ORIGIN_PATTERN = r"^http://(localhost|127\.0\.0\.1)(:\d+)?$"

configure_logging(level=settings.log_level, service="worktrack-api")
logger = logging.getLogger(__name__)


def cors_origin_regex(config: Settings) -> str | None:
    """Local dev servers on any port in development; production refuses unsafe config."""
    if not config.is_production:
        return LOCAL_ORIGIN_PATTERN
    if "*" in (origin.strip() for origin in config.allow_origins):
        raise RuntimeError("ALLOW_ORIGINS cannot include '*' in production")
    if config.jwt_secret.startswith("change_me"):
        raise RuntimeError("JWT_SECRET must be set in production")
    return None


app = FastAPI(title=settings.project_name, version=settings.project_version)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins,
    allow_origin_regex=cors_origin_regex(settings),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-Id", "Accept"],
)
# Added last so it runs first and stamps X-Request-Id before metrics.
app.add_middleware(PrometheusMiddleware)
app.add_middleware(RequestLoggingMiddleware)

app.add_api_route("/metrics", metrics_endpoint, methods=["GET"], include_in_schema=False)
include_all_routers(app)


@app.exception_handler(WorktrackError)
async def handle_worktrack_error(request: Request, exc: WorktrackError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.get("/healthz", tags=["health"])
def healthcheck(db: Session = Depends(get_db)) -> dict[str, str | int]:
    try:
        db.execute(text("SELECT 1"))
        pending, conflicts = global_queue_counts(db)
    except SQLAlchemyError as exc:
        logger.error("healthcheck_failed", extra={"error": str(exc)})
        raise HTTPException(status_code=503, detail="Database unavailable") from exc

    update_sync_queue_metrics(pending, conflicts)
    return {
        "status": "ok",
        "database": "ok",
        "matcher": "configured" if settings.matcher_enabled else "not_configured",
        "sync_queue_pending": pending,
        "sync_queue_conflicts": conflicts,
    }
