"""
Entitlement API routes.

- GET  /api/entitlements/availability: Can the account afford an action
- GET  /api/entitlements/status: Plan status and usage percentage
- POST /api/entitlements/consume: Gate and charge a billable action
"""
import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from sharewizard.api.deps import Services, get_account_id, get_services
from sharewizard.core.errors import StoreError
from sharewizard.features.plans.catalog import FREE_PLAN_ID
from sharewizard.features.usage.ledger import GenerationCost, days_remaining, resolve_limit


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/entitlements", tags=["entitlements"])


class AvailabilityResponse(BaseModel):
    can_proceed: bool
    used: int
    limit: int
    plan: str
    plan_name: str


class PlanStatusResponse(BaseModel):
    status: str
    message: str
    usage_percentage: float
    warning: bool
    plan: str
    used: int
    limit: int
    trial_days_remaining: int
    suggested_upgrade: str


class ConsumeRequest(BaseModel):
    cost: int = Field(default=GenerationCost.CAPTION, ge=1)


class ConsumeResponse(BaseModel):
    used: int
    limit: int
    remaining: int
    plan: str
    is_last_request: bool


@router.get("/availability", response_model=AvailabilityResponse)
async def availability(
    cost: int = Query(GenerationCost.CAPTION, ge=1),
    account_id: str = Depends(get_account_id),
    services: Services = Depends(get_services),
):
    result = await services.entitlements.check_availability(account_id, cost)
    return AvailabilityResponse(
        can_proceed=result.can_proceed,
        used=result.used,
        limit=result.limit,
        plan=result.plan,
        plan_name=services.catalog.format_plan_name(result.plan),
    )


@router.get("/status", response_model=PlanStatusResponse)
async def plan_status(
    account_id: str = Depends(get_account_id),
    services: Services = Depends(get_services),
):
    """Plan status; a failed account read reports UPGRADE rather than an error."""
    result = await services.entitlements.check_plan_status(account_id)
    try:
        record = await services.ledger.get_account(account_id)
    except StoreError:
        logger.warning("[entitlement] status details unavailable", extra={"account_id": account_id})
        record = None

    plan = record.plan_type if record else FREE_PLAN_ID
    return PlanStatusResponse(
        status=result.status.value,
        message=result.message,
        usage_percentage=result.usage_percentage,
        warning=result.warning,
        plan=plan,
        used=record.requests_used if record else 0,
        limit=resolve_limit(record, services.catalog) if record else 0,
        trial_days_remaining=days_remaining(record.trial_end_date) if record else 0,
        suggested_upgrade=services.catalog.suggested_upgrade(plan),
    )


@router.post("/consume", response_model=ConsumeResponse)
async def consume(
    body: ConsumeRequest,
    account_id: str = Depends(get_account_id),
    services: Services = Depends(get_services),
):
    counter = await services.entitlements.consume(account_id, body.cost)
    return ConsumeResponse(
        used=counter.used,
        limit=counter.limit,
        remaining=counter.remaining,
        plan=counter.plan,
        is_last_request=counter.used == counter.limit - 1,
    )
