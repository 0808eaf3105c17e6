"""
Plan Graph Service - FastAPI application

Action plans, their task dependency graph and progress tracking.
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from api.endpoints import plans, progress, tasks
from api.errors import register_exception_handlers
from api.middleware import LoggingMiddleware, RateLimitMiddleware, cors_options
from database import AsyncSessionLocal, close_db_connections, create_tables
from logging_config import get_logger
from plan_config import API_PREFIX, EXPORT_REQUESTS_PER_MINUTE

logger = get_logger(__name__)

VERSION = "1.0.0"


async def wait_for_db(max_retries: int = 30, delay: float = 2.0) -> None:
    """Wait for database connection"""
    for attempt in range(1, max_retries + 1):
        try:
            async with AsyncSessionLocal() as session:
                await session.execute(text("SELECT 1"))
            logger.info("database_connected", attempt=attempt)
            return
        except Exception as e:
            logger.warning("database_unavailable", attempt=attempt, max_retries=max_retries, error=str(e))
            await asyncio.sleep(delay)

    raise RuntimeError("Failed to connect to database after maximum retries")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("plan_graph_starting", version=VERSION)

    await wait_for_db()
    await create_tables()

    logger.info("plan_graph_online")

    yield

    logger.info("plan_graph_stopping")
    await close_db_connections()


def create_app(
    use_lifespan: bool = True,
    export_requests_per_minute: int = EXPORT_REQUESTS_PER_MINUTE
) -> FastAPI:
    app = FastAPI(
        title="Plan Graph Service",
        description="Action plans, task dependency graph and progress tracking",
        version=VERSION,
        lifespan=lifespan if use_lifespan else None,
    )

    app.add_middleware(CORSMiddleware, **cors_options())
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RateLimitMiddleware, requests_per_minute=export_requests_per_minute)

    register_exception_handlers(app)

    app.include_router(plans.router, prefix=API_PREFIX)
    app.include_router(tasks.router, prefix=API_PREFIX)
    app.include_router(progress.router, prefix=API_PREFIX)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": VERSION,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
