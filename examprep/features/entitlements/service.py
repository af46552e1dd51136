"""
examprep/features/entitlements/service.py

Entitlement decisions for subscription-gated features.

Handles:
- Effective plan resolution (expiry and cancellation re-derived at read time)
- Capability checks against the static plan matrix
- Subject restriction for task solving
- Structured logs only; this module never writes to storage
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Union
import logging

from examprep.core.config import settings
from examprep.core.errors import SubscriptionRequiredError
from examprep.core.metrics import entitlement_denied_total
from examprep.features.plans.service import (
    get_plan_limits,
    parse_plan,
    plan_display_name,
)
from examprep.models.plan import Capability
from examprep.models.subscription import Subscription, SubscriptionPlan, SubscriptionStatus


logger = logging.getLogger("examprep")

DENIAL_MESSAGES: Mapping[Capability, str] = {
    Capability.AI_CHAT: (
        "AI чат недоступен для бесплатного плана. "
        "Оформите подписку для доступа к AI-помощнику."
    ),
    Capability.TASKS: "Задания недоступны для вашего плана.",
    Capability.VARIANTS: (
        "Пробные варианты недоступны для бесплатного плана. "
        "Оформите подписку для доступа."
    ),
    Capability.TRAINERS: (
        "Тренажёры недоступны для бесплатного плана. "
        "Оформите подписку \"СТАРТ К ОГЭ\" для доступа."
    ),
    Capability.PERSONAL_STATS: (
        "Персональная статистика доступна только в платных планах. "
        "Оформите подписку \"ЭКОНОМ-МАСТЕР\" или \"ПЯТЁРКА ГАРАНТИРОВАНА\"."
    ),
}

_missing_messages = [cap.value for cap in Capability if cap not in DENIAL_MESSAGES]
if _missing_messages:
    raise RuntimeError(f"Capabilities without a denial message: {_missing_messages}")


@dataclass(frozen=True)
class EntitlementDecision:
    allowed: bool
    capability: Capability
    effective_plan: SubscriptionPlan
    reason: Optional[str] = None
    upgrade_required: bool = False

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "allowed": self.allowed,
            "capability": self.capability.value,
            "effective_plan": self.effective_plan.value,
        }
        if not self.allowed:
            payload["reason"] = self.reason
            payload["upgrade_required"] = self.upgrade_required
        return payload


def normalize_now(now: Optional[Any]) -> datetime:
    """Current UTC time when `now` is None; naive datetimes are taken as UTC."""
    if now is None:
        return datetime.now(timezone.utc)
    if getattr(now, "tzinfo", None) is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def _coerce_capability(capability: Union[Capability, str]) -> Capability:
    """Unknown capability tags are programmer errors: fail fast."""
    if isinstance(capability, Capability):
        return capability
    try:
        return Capability(capability)
    except ValueError:
        raise ValueError(f"Unknown capability: {capability!r}") from None


def resolve_effective_plan(subscription: Subscription, now: Optional[Any] = None) -> SubscriptionPlan:
    """Plan that actually applies at `now` (free unless active and unexpired)."""
    if not subscription.is_active_at(normalize_now(now)):
        return SubscriptionPlan.FREE
    return parse_plan(subscription.plan)


def needs_demotion(subscription: Subscription, now: Optional[Any] = None) -> bool:
    """True when storage still says active but the subscription has lapsed."""
    return (
        subscription.status == SubscriptionStatus.ACTIVE
        and not subscription.is_active_at(normalize_now(now))
    )


def check_capability(
    subscription: Subscription,
    capability: Union[Capability, str],
    subject_name: Optional[str] = None,
    *,
    now: Optional[Any] = None,
) -> EntitlementDecision:
    """Decide whether `capability` is available under the subscription.

    Pure: reads the static plan matrix only. Persisting a passive expiry is
    the caller's job (see `needs_demotion`).

    Raises:
        ValueError: capability is not one of `Capability`
    """
    cap = _coerce_capability(capability)
    effective_plan = resolve_effective_plan(subscription, now)
    limits = get_plan_limits(effective_plan)

    if not limits.has_feature(cap.value):
        return _deny(cap, effective_plan, subscription, DENIAL_MESSAGES[cap])

    if cap == Capability.TASKS and subject_name and not limits.allows_all_subjects:
        if subject_name not in limits.subjects:
            reason = (
                f"Предмет \"{subject_name}\" недоступен для вашего плана \"{limits.name}\". "
                f"Доступны: {', '.join(limits.subjects)}. "
                "Оформите подписку для доступа ко всем предметам."
            )
            return _deny(cap, effective_plan, subscription, reason, subject_name=subject_name)

    return EntitlementDecision(allowed=True, capability=cap, effective_plan=effective_plan)


def _deny(
    cap: Capability,
    effective_plan: SubscriptionPlan,
    subscription: Subscription,
    reason: str,
    *,
    subject_name: Optional[str] = None,
) -> EntitlementDecision:
    entitlement_denied_total.inc(labels={"capability": cap.value})
    logger.info(
        "[entitlements] capability denied",
        extra={
            "capability": cap.value,
            "plan": effective_plan.value,
            "stored_plan": parse_plan(subscription.plan).value,
            "subject": subject_name,
        },
    )
    return EntitlementDecision(
        allowed=False,
        capability=cap,
        effective_plan=effective_plan,
        reason=reason,
        upgrade_required=True,
    )


def require_capability(
    subscription: Subscription,
    capability: Union[Capability, str],
    subject_name: Optional[str] = None,
    *,
    now: Optional[Any] = None,
) -> EntitlementDecision:
    """Request-layer guard: raise SubscriptionRequiredError on denial."""
    decision = check_capability(subscription, capability, subject_name, now=now)
    if not decision.allowed:
        raise SubscriptionRequiredError(
            decision.reason or "Требуется платная подписка",
            details={
                "capability": decision.capability.value,
                "upgrade_required": decision.upgrade_required,
                "upgrade_url": settings.UPGRADE_URL,
            },
        )
    return decision


def get_subscription_info(subscription: Subscription, now: Optional[Any] = None) -> Dict[str, Any]:
    """Summary for account pages: effective plan, stored status and limits."""
    normalized_now = normalize_now(now)
    effective_plan = resolve_effective_plan(subscription, normalized_now)
    limits = get_plan_limits(effective_plan)
    return {
        "plan": effective_plan.value,
        "plan_name": plan_display_name(effective_plan),
        "status": subscription.status.value,
        "expires_at": subscription.expires_at.isoformat() if subscription.expires_at else None,
        "auto_renewal": subscription.auto_renewal,
        "is_active": subscription.is_active_at(normalized_now),
        "limits": {
            "name": limits.name,
            "ai_requests_per_day": limits.ai_requests_per_day,
            "tasks_per_day": limits.tasks_per_day,
            "subjects": limits.subjects if limits.allows_all_subjects else list(limits.subjects),
            "features": dict(limits.features),
        },
    }
