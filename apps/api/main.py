"""FastAPI application entrypoint for the Library Enrichment API."""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from api.routes import enrichment, health
from core.config import get_settings
from db.session import create_db_and_tables, dispose_engine

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
# One line per Goodreads/Anthropic request would drown out job progress
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


async def _close_adapters() -> None:
    for job in (enrichment.get_summary_job(), enrichment.get_ratings_job()):
        try:
            await job.aclose()
        except Exception as e:
            logger.warning("Error closing %s: %s", type(job).__name__, e)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create tables, start the enrichment scheduler, and tear both down on exit."""
    config = get_settings()
    logger.info("Starting %s %s (%s)", config.app_name, config.app_version, config.environment)
    await create_db_and_tables()

    if not config.ai_configured:
        logger.warning("ANTHROPIC_API_KEY not set; AI summary runs will be no-ops")

    scheduler = enrichment.get_scheduler()
    app.state.scheduler = scheduler
    if config.scheduler_enabled:
        scheduler.start()
    else:
        logger.info("Enrichment scheduler disabled; jobs run only when triggered")

    yield

    logger.info("Stopping enrichment jobs...")
    try:
        # Stay inside docker's 30s stop grace period
        await scheduler.shutdown(timeout=25.0)
    except Exception as e:
        logger.warning("Error during scheduler shutdown: %s", e)
    await _close_adapters()
    await dispose_engine()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    config = get_settings()

    app = FastAPI(
        title=config.app_name,
        version=config.app_version,
        description="Background enrichment of library records with AI summaries and Goodreads ratings",
        lifespan=lifespan,
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(enrichment.router, prefix="/enrichment", tags=["Enrichment"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    config = get_settings()
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        workers=config.workers if not config.debug else 1,
    )
