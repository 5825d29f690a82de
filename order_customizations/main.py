import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse
from sqlalchemy import text

from order_customizations.config import settings
from order_customizations.db.base import engine, init_db, session_scope
from order_customizations.errors import CustomizationError
from order_customizations.routers import customizations
from order_customizations.services.temp_files import TempFileStore, sweep_expired_temp_files

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _app_lifespan(_app: FastAPI) -> AsyncIterator[None]:
    init_db()
    store = TempFileStore()
    with session_scope() as session:
        sweep_expired_temp_files(session, store)
    store.sweep_older_than()
    yield


def create_app() -> FastAPI:
    logging.basicConfig(level=settings.LOG_LEVEL.upper())
    app = FastAPI(
        title="Order Customizations API",
        default_response_class=ORJSONResponse,
        lifespan=_app_lifespan,
    )

    @app.exception_handler(CustomizationError)
    async def customization_error_handler(_request: Request, exc: CustomizationError) -> ORJSONResponse:
        if exc.status_code >= 500:
            logger.error("Customization request failed", exc_info=exc)
        return ORJSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("Unhandled server exception", exc_info=exc)
        return ORJSONResponse(status_code=500, content={"detail": "Internal server error."})

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/health/db")
    def health_db() -> dict[str, str]:
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return {"db": "ok"}
        except Exception as exc:  # pragma: no cover - simple runtime check
            return {"db": f"error: {exc}"}

    app.include_router(customizations.router)

    return app


app = create_app()
