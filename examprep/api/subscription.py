"""Subscription API routes.

- GET  /api/subscription/plans: plan catalog with limits
- GET  /api/subscription/my: current subscription (persists lapsed expiry)
- POST /api/subscription/subscribe: test-mode activation, no payment
- POST /api/subscription/cancel: cancel current subscription
- GET  /api/subscription/access/{capability}: entitlement decision
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from examprep.core.auth import get_current_user_id
from examprep.core.errors import ValidationError
from examprep.core.logging import get_request_id
from examprep.features.entitlements.service import check_capability, get_subscription_info
from examprep.features.plans.service import get_plan_limits, list_plan_offers
from examprep.features.subscriptions.service import (
    activate_plan,
    cancel_subscription,
    demote_expired,
    get_subscription,
)
from examprep.models.plan import Capability

router = APIRouter(prefix="/api/subscription", tags=["subscription"])


class SubscribeRequest(BaseModel):
    plan: str


class CancelRequest(BaseModel):
    reason: Optional[str] = None


def _rid(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None) or get_request_id()


@router.get("/plans")
def list_plans():
    plans = []
    for offer in list_plan_offers():
        limits = get_plan_limits(offer.plan)
        plans.append({
            "id": offer.plan.value,
            "name": offer.name,
            "price": offer.price,
            "duration_days": offer.duration_days,
            "ai_requests_per_day": limits.ai_requests_per_day,
            "tasks_per_day": limits.tasks_per_day,
            "subjects": limits.subjects if limits.allows_all_subjects else list(limits.subjects),
            "features": dict(limits.features),
        })
    return {"plans": plans}


@router.get("/my")
async def my_subscription(request: Request, user_id: str = Depends(get_current_user_id)):
    await run_in_threadpool(demote_expired, user_id)
    subscription = await run_in_threadpool(get_subscription, user_id)
    return {"subscription": get_subscription_info(subscription), "request_id": _rid(request)}


@router.post("/subscribe")
async def subscribe(body: SubscribeRequest, request: Request, user_id: str = Depends(get_current_user_id)):
    subscription = await run_in_threadpool(activate_plan, user_id, body.plan)
    return {
        "success": True,
        "message": "Подписка успешно активирована (тестовый режим)",
        "subscription": get_subscription_info(subscription),
        "request_id": _rid(request),
    }


@router.post("/cancel")
async def cancel(request: Request, body: Optional[CancelRequest] = None, user_id: str = Depends(get_current_user_id)):
    reason = body.reason if body else None
    subscription = await run_in_threadpool(cancel_subscription, user_id, reason)
    return {
        "success": True,
        "message": "Подписка отменена",
        "subscription": get_subscription_info(subscription),
        "request_id": _rid(request),
    }


@router.get("/access/{capability}")
async def check_access(
    capability: str,
    request: Request,
    subject: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
):
    try:
        cap = Capability(capability)
    except ValueError:
        raise ValidationError(f"Unknown capability: {capability}", request_id=_rid(request)) from None
    subscription = await run_in_threadpool(get_subscription, user_id)
    decision = check_capability(subscription, cap, subject)
    return {**decision.to_dict(), "request_id": _rid(request)}
