from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from examhall.api.router import router
from examhall.errors import add_error_handlers
from examhall.middleware import TimingMiddleware
from examhall.observability import configure_logging, init_otel
from examhall.settings import settings
from examhall.wiring import get_repo

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    repo = get_repo()
    logger.info(f"Starting {settings.app_name} ({settings.env}) with {settings.storage_backend} storage")
    await repo.ensure_indexes()
    yield
    await repo.close()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    init_otel(
        app=app,
        enabled=settings.observability_enabled,
        service_name=settings.otel_service_name,
        otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        console_exporter=settings.otel_exporter_console,
        sample_rate=settings.otel_sample_rate,
    )

    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(TimingMiddleware)
    add_error_handlers(app)

    app.include_router(router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "env": settings.env}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("examhall.main:app", host="0.0.0.0", port=8000, reload=settings.env == "dev")
