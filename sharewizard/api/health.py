"""
Health API.

Lightweight liveness plus the configured backends (no secrets).
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from sharewizard.api.deps import Services, get_services
from sharewizard.core.database import check_connection
from sharewizard.features.billing.stripe_provider import billing_enabled


router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health(services: Services = Depends(get_services)):
    cfg = services.settings
    body = {
        "status": "ok",
        "env": cfg.ENV,
        "store_backend": cfg.STORE_BACKEND,
        "checkout_gateway": cfg.CHECKOUT_GATEWAY,
        "billing_enabled": cfg.CHECKOUT_GATEWAY == "document_store" or billing_enabled(cfg),
        "plans": list(services.catalog.plan_ids),
    }
    if cfg.STORE_BACKEND == "sql" and not check_connection():
        body["status"] = "error"
        return JSONResponse(status_code=503, content=body)
    return body
