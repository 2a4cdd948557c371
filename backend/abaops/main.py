from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from abaops.core.logging import RequestLoggingMiddleware, configure_logging
from abaops.core.settings import settings
from abaops.db.session import engine, get_db
from abaops.models.email_queue import EmailQueueItem
from abaops.models.enums import EmailQueueStatus
from abaops.modules.router_registry import include_all_routers

configure_logging(level=settings.log_level)

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.project_name, version=settings.project_version)

# Always allow localhost during development (Vite often changes ports).
allow_origin_regex = None
if not settings.is_production:
    allow_origin_regex = r"^http://(localhost|127\.0\.0\.1)(:\d+)?$"
else:
    if any(origin.strip() == "*" for origin in settings.allow_origins):
        raise RuntimeError("ALLOW_ORIGINS cannot include '*' in production")
    if settings.jwt_secret.startswith("change_me"):
        raise RuntimeError("JWT_SECRET must be set in production")
    if "change_me" in settings.database_url:
        raise RuntimeError("DATABASE_URL password must be set in production")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-Id", "Accept"],
)
app.add_middleware(RequestLoggingMiddleware)

include_all_routers(app)


@app.get("/healthz", tags=["health"])
def healthcheck(db: Session = Depends(get_db)) -> dict[str, str | int]:
    """Database connectivity plus email queue backlog; 503 when the database is unreachable."""
    try:
        db.execute(text("SELECT 1"))
        queued_count = db.query(EmailQueueItem).filter(
            EmailQueueItem.status == EmailQueueStatus.QUEUED,
            EmailQueueItem.not_deleted(),
        ).count()
        failed_count = db.query(EmailQueueItem).filter(
            EmailQueueItem.status == EmailQueueStatus.FAILED,
            EmailQueueItem.not_deleted(),
        ).count()
    except SQLAlchemyError as exc:
        logger.error("Healthcheck failed: %s", exc, exc_info=True)
        raise HTTPException(status_code=503, detail="Service unavailable") from exc

    status = "ok"
    if queued_count > 100 or failed_count > 50:
        status = "degraded"
    return {
        "status": status,
        "database": "ok",
        "email_queue_pending": queued_count,
        "email_queue_failed": failed_count,
    }


@app.get("/readyz", tags=["health"])
def readiness() -> dict[str, str]:
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
            try:
                result = connection.execute(text("SELECT version_num FROM alembic_version")).scalar()
            except SQLAlchemyError:
                raise HTTPException(status_code=503, detail="Migrations not applied")
    except HTTPException:
        raise
    except SQLAlchemyError as exc:  # pragma: no cover - runtime readiness check
        raise HTTPException(status_code=503, detail="Database unavailable") from exc
    return {"status": "ok", "alembic_revision": str(result)}


@app.get("/version", tags=["health"])
def version() -> dict[str, str | None]:
    return {
        "version": settings.project_version,
        "git_sha": settings.git_sha,
        "environment": settings.environment,
    }


@app.on_event("startup")
def startup_event() -> None:
    settings.ensure_uploads_dir()
    logger.info("%s %s started (%s)", settings.project_name, settings.project_version, settings.environment)
