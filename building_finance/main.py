"""Building finance FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from building_finance import __version__
from building_finance.api import finances
from building_finance.models import Base
from building_finance.services import async_engine
from building_finance.services.config import load_config
from building_finance.services.errors import FinanceError, error_response
from building_finance.services.logging import setup_server_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle (startup and shutdown)."""
    # Startup: make sure tables exist for local SQLite runs; Alembic owns real schemas
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")
    yield
    await async_engine.dispose()
    logger.info("Application shutting down")


app = FastAPI(
    title="Building Finance",
    description="Financial quarters and service charge demands for managed buildings",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(finances.router)


@app.exception_handler(FinanceError)
async def finance_error_handler(request: Request, exc: FinanceError) -> JSONResponse:
    """Render finance errors as {"error": {"code", "message"}}."""
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning(
            "%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message
        )
    return JSONResponse(status_code=exc.http_status, content=error_response(exc))


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


def main() -> None:
    import uvicorn

    config = load_config()
    setup_server_logging(config.log_file)
    uvicorn.run(app, host="0.0.0.0", port=8000, log_config=None)


if __name__ == "__main__":
    main()
