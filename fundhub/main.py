"""
fundhub ASGI application.

Run with ``uvicorn fundhub.main:app`` or ``python -m fundhub.main``.
"""
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fundhub.core.config import settings
from fundhub.core.logging_config import setup_logging, get_main_logger
from fundhub.core.exceptions import register_exception_handlers

# Loggers must exist before the service modules grab them
setup_logging()
logger = get_main_logger()
from fundhub.api.v1.funds import router as funds_router
from fundhub.api.v1.meta import router as meta_router
from fundhub.services.fund_data import FundDataService, fund_data_service

API_VERSION = "1.0.0"


def create_app(service: FundDataService = fund_data_service) -> FastAPI:
    """Build the API around ``service``, opening and closing it with the app."""

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await service.start()
        logger.info(f"fundhub {API_VERSION} ready, API under {settings.api_v1_prefix}")
        try:
            yield
        finally:
            await service.close()

    application = FastAPI(
        title="Fund Hub API",
        description="Live valuation, official net values and history for open-end funds",
        version=API_VERSION,
        lifespan=lifespan,
    )
    register_exception_handlers(application)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    for router in (funds_router, meta_router):
        application.include_router(router, prefix=settings.api_v1_prefix)

    @application.get("/")
    async def index():
        return {"name": "fundhub", "version": API_VERSION, "docs": "/docs"}

    @application.get("/health")
    async def health():
        """Liveness plus whether provider scripts can currently be loaded."""
        return {
            "status": "healthy",
            "script_environment": service.transport.available,
        }

    return application


app = create_app()


if __name__ == "__main__":
    uvicorn.run("fundhub.main:app", host="0.0.0.0", port=8000)
