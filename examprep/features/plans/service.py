"""
examprep/features/plans/service.py

Static plan matrix and catalog.

Handles:
- PlanLimits per SubscriptionPlan (built once, never mutated)
- Plan catalog (price, duration) used by the test-mode purchase flow
"""

from types import MappingProxyType
from typing import Dict, List, Mapping, Union

from examprep.models.plan import ALL_SUBJECTS, UNLIMITED, Capability, PlanLimits, PlanOffer
from examprep.models.subscription import SubscriptionPlan

BASE_SUBJECTS = ("Математика", "Русский язык")

_FEATURE_NAMES = (
    "aiChat",
    "tasks",
    "basicExplanations",
    "detailedExplanations",
    "progress",
    "basicStats",
    "personalStats",
    "variants",
    "trainers",
    "allSubjects",
    "unlimitedTasks",
    "mobileApp",
    "support24_7",
    "prioritySupport",
    "resultGuarantee",
)

# plan -> (name, ai/day, tasks/day, subjects, enabled features)
_PLAN_TABLE = {
    SubscriptionPlan.FREE: (
        "Бесплатный", 3, 5, BASE_SUBJECTS,
        {"tasks", "basicExplanations", "progress", "basicStats"},
    ),
    SubscriptionPlan.START: (
        "СТАРТ К ОГЭ", 10, 50, BASE_SUBJECTS,
        {"aiChat", "tasks", "basicExplanations", "detailedExplanations", "progress",
         "basicStats", "variants", "trainers"},
    ),
    SubscriptionPlan.ECONOM: (
        "ЭКОНОМ-МАСТЕР", 100, UNLIMITED, ALL_SUBJECTS,
        {"aiChat", "tasks", "basicExplanations", "detailedExplanations", "progress",
         "basicStats", "personalStats", "variants", "trainers", "allSubjects",
         "unlimitedTasks", "mobileApp", "support24_7"},
    ),
    SubscriptionPlan.PREMIUM: (
        "ПЯТЁРКА ГАРАНТИРОВАНА", UNLIMITED, UNLIMITED, ALL_SUBJECTS,
        set(_FEATURE_NAMES),
    ),
}


def _build_limits() -> Mapping[SubscriptionPlan, PlanLimits]:
    limits: Dict[SubscriptionPlan, PlanLimits] = {}
    for plan, (name, ai_per_day, tasks_per_day, subjects, enabled) in _PLAN_TABLE.items():
        unknown = enabled - set(_FEATURE_NAMES)
        if unknown:
            raise ValueError(f"Unknown features for plan {plan.value}: {sorted(unknown)}")
        limits[plan] = PlanLimits(
            name=name,
            ai_requests_per_day=ai_per_day,
            tasks_per_day=tasks_per_day,
            subjects=subjects,
            features=MappingProxyType({feature: feature in enabled for feature in _FEATURE_NAMES}),
        )
    missing = [cap.value for cap in Capability if cap.value not in _FEATURE_NAMES]
    if missing:
        raise ValueError(f"Capabilities without a feature column: {missing}")
    return MappingProxyType(limits)


PLAN_LIMITS: Mapping[SubscriptionPlan, PlanLimits] = _build_limits()


PLAN_CATALOG: Mapping[SubscriptionPlan, PlanOffer] = MappingProxyType({
    SubscriptionPlan.FREE: PlanOffer(plan=SubscriptionPlan.FREE, name="Бесплатный", price=0),
    SubscriptionPlan.START: PlanOffer(plan=SubscriptionPlan.START, name="СТАРТ К ОГЭ", price=600, duration_days=30),
    SubscriptionPlan.ECONOM: PlanOffer(plan=SubscriptionPlan.ECONOM, name="ЭКОНОМ-МАСТЕР", price=450, duration_days=270),
    SubscriptionPlan.PREMIUM: PlanOffer(plan=SubscriptionPlan.PREMIUM, name="ПЯТЁРКА ГАРАНТИРОВАНА", price=500, duration_days=180),
})


def parse_plan(plan: Union[SubscriptionPlan, str, None]) -> SubscriptionPlan:
    """Coerce a stored plan value; anything unrecognised is the free plan."""
    if isinstance(plan, SubscriptionPlan):
        return plan
    try:
        return SubscriptionPlan(str(plan or "").strip().lower())
    except ValueError:
        return SubscriptionPlan.FREE


def get_plan_limits(plan: Union[SubscriptionPlan, str, None]) -> PlanLimits:
    return PLAN_LIMITS[parse_plan(plan)]


def plan_display_name(plan: Union[SubscriptionPlan, str, None]) -> str:
    return get_plan_limits(plan).name


def get_plan_offer(plan: Union[SubscriptionPlan, str, None]) -> PlanOffer:
    return PLAN_CATALOG[parse_plan(plan)]


def list_plan_offers() -> List[PlanOffer]:
    return list(PLAN_CATALOG.values())


def plans_with_capability(capability: Capability) -> List[SubscriptionPlan]:
    """Plans under which a capability is enabled, cheapest tier first."""
    return [plan for plan, limits in PLAN_LIMITS.items() if limits.has_feature(capability.value)]
