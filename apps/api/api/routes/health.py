"""Health check endpoints."""

import logging
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from db.models import AIBookSummary, Ebook
from db.session import get_session

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthStatus(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy", "degraded"]
    database: Literal["connected", "disconnected"]
    tables: Literal["ready", "missing"]
    ai_summaries: Literal["configured", "missing"]
    scheduler: Literal["enabled", "disabled"]
    version: str
    environment: str


class LivenessResponse(BaseModel):
    """Kubernetes liveness probe response."""

    status: Literal["ok"]


class ReadinessResponse(BaseModel):
    """Kubernetes readiness probe response."""

    status: Literal["ready", "not_ready"]
    details: dict[str, bool]


async def _database_reachable(session: AsyncSession) -> bool:
    try:
        await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Database health check failed: %s", e)
        return False


async def _enrichment_tables_exist(session: AsyncSession) -> bool:
    """Both enrichment tables answer a query (migrations applied)."""
    try:
        await session.execute(select(Ebook.id).limit(1))
        await session.execute(select(AIBookSummary.id).limit(1))
        return True
    except Exception as e:
        logger.warning("Enrichment tables not queryable: %s", e)
        await session.rollback()
        return False


@router.get("/health", response_model=HealthStatus)
async def health_check(
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> HealthStatus:
    """
    Full health check.

    Unhealthy when the database or the enrichment tables are unavailable;
    degraded when only the Anthropic key is missing (ratings still run).
    """
    database_ok = await _database_reachable(session)
    tables_ok = database_ok and await _enrichment_tables_exist(session)

    overall: Literal["healthy", "unhealthy", "degraded"]
    if not tables_ok:
        overall = "unhealthy"
    elif not settings.ai_configured:
        overall = "degraded"
    else:
        overall = "healthy"

    return HealthStatus(
        status=overall,
        database="connected" if database_ok else "disconnected",
        tables="ready" if tables_ok else "missing",
        ai_summaries="configured" if settings.ai_configured else "missing",
        scheduler="enabled" if settings.scheduler_enabled else "disabled",
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get("/health/live", response_model=LivenessResponse)
async def liveness_probe() -> LivenessResponse:
    """Kubernetes liveness probe - checks if app is running."""
    return LivenessResponse(status="ok")


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_probe(
    session: AsyncSession = Depends(get_session),
) -> ReadinessResponse:
    """Kubernetes readiness probe - the jobs need the database and their tables."""
    database_ok = await _database_reachable(session)
    checks = {
        "database": database_ok,
        "tables": database_ok and await _enrichment_tables_exist(session),
    }
    return ReadinessResponse(
        status="ready" if all(checks.values()) else "not_ready",
        details=checks,
    )
