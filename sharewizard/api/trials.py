"""
Trial lifecycle API routes.

Transitions that are not allowed return 409 with the current state left
untouched.
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from sharewizard.api.deps import Services, get_account_id, get_services
from sharewizard.core.errors import AppError
from sharewizard.features.usage.ledger import days_remaining


router = APIRouter(prefix="/trials", tags=["trials"])


class TrialTransitionError(AppError):
    code = "invalid_trial_transition"
    status_code = 409


class MarkTrialRequest(BaseModel):
    selected_plan: str = "basicMonth"
    selected_cycle: str = "monthly"


class TrialStateResponse(BaseModel):
    eligible: bool
    plan: str
    has_used_trial: bool
    trial_pending: bool
    selected_plan: Optional[str] = None
    selected_cycle: Optional[str] = None
    trial_days_remaining: int


async def _state(services: Services, account_id: str) -> TrialStateResponse:
    record = await services.ledger.get_account(account_id)
    return TrialStateResponse(
        eligible=await services.trials.is_eligible_for_trial(account_id),
        plan=record.plan_type,
        has_used_trial=record.has_used_trial,
        trial_pending=record.trial_pending,
        selected_plan=record.selected_plan,
        selected_cycle=record.selected_cycle,
        trial_days_remaining=days_remaining(record.trial_end_date),
    )


@router.get("/eligibility", response_model=TrialStateResponse)
async def eligibility(account_id: str = Depends(get_account_id), services: Services = Depends(get_services)):
    return await _state(services, account_id)


@router.post("/mark", response_model=TrialStateResponse)
async def mark(
    body: MarkTrialRequest,
    account_id: str = Depends(get_account_id),
    services: Services = Depends(get_services),
):
    if not await services.trials.mark_for_trial(account_id, body.selected_plan, body.selected_cycle):
        raise TrialTransitionError("Trials can only be started from the free plan with a valid plan selection")
    return await _state(services, account_id)


@router.post("/activate", response_model=TrialStateResponse)
async def activate(account_id: str = Depends(get_account_id), services: Services = Depends(get_services)):
    """Payment confirmed for a pending trial."""
    if not await services.trials.activate_trial_after_payment(account_id):
        raise TrialTransitionError("No pending trial to activate")
    return await _state(services, account_id)


@router.post("/cancel", response_model=TrialStateResponse)
async def cancel(account_id: str = Depends(get_account_id), services: Services = Depends(get_services)):
    """Checkout cancelled: release the pending lock."""
    if not await services.trials.clear_trial_pending(account_id):
        raise TrialTransitionError("Pending trial could not be cleared")
    return await _state(services, account_id)
