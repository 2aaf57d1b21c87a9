import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from sharewizard.api import billing, entitlements, health, referrals, trials
from sharewizard.api.deps import Services, build_services
from sharewizard.core.config import Settings, settings as default_settings, validate_config
from sharewizard.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from sharewizard.core.logging import configure_logging
from sharewizard.core.middleware.request_id import RequestIdMiddleware


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """Build the API app; pass `services` to inject stores/gateways (tests)."""
    cfg = settings or (services.settings if services else default_settings)
    configure_logging(cfg.ENV)
    validate_config(strict=cfg.CONFIG_STRICT, settings_obj=cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = logging.getLogger("sharewizard")
        logger.info("Starting ShareWizard entitlements service...")
        try:
            yield
        finally:
            logger.info("Stopping ShareWizard entitlements service...")

    app = FastAPI(title="ShareWizard - Entitlements", lifespan=lifespan)
    app.state.services = services or build_services(cfg)

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[cfg.BASE_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(entitlements.router, prefix="/api")
    app.include_router(trials.router, prefix="/api")
    app.include_router(referrals.router, prefix="/api")
    app.include_router(billing.router, prefix="/api")
    app.include_router(health.router, prefix="/api")
    return app


def get_app() -> FastAPI:
    """uvicorn factory: `uvicorn sharewizard.main:get_app --factory`."""
    load_dotenv()
    return create_app(Settings())
