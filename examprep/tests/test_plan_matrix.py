"""Tests for the static plan matrix and catalog."""

import pytest

from examprep.features.plans.service import (
    PLAN_CATALOG,
    PLAN_LIMITS,
    get_plan_limits,
    get_plan_offer,
    list_plan_offers,
    parse_plan,
    plans_with_capability,
)
from examprep.models.plan import ALL_SUBJECTS, UNLIMITED, Capability
from examprep.models.subscription import SubscriptionPlan


def test_every_plan_has_limits_and_offer():
    for plan in SubscriptionPlan:
        assert plan in PLAN_LIMITS
        assert plan in PLAN_CATALOG


def test_every_capability_is_a_feature_column():
    for limits in PLAN_LIMITS.values():
        for cap in Capability:
            assert cap.value in limits.features


def test_free_plan_limits():
    limits = get_plan_limits(SubscriptionPlan.FREE)
    assert limits.ai_requests_per_day == 3
    assert limits.tasks_per_day == 5
    assert limits.subjects == ("Математика", "Русский язык")
    assert not limits.has_feature("aiChat")
    assert limits.has_feature("tasks")


def test_paid_plans_unlock_expected_features():
    start = get_plan_limits("start")
    assert start.has_feature("aiChat") and start.has_feature("trainers")
    assert not start.has_feature("personalStats")

    econom = get_plan_limits("econom")
    assert econom.subjects == ALL_SUBJECTS
    assert econom.tasks_per_day == UNLIMITED
    assert econom.has_feature("personalStats")
    assert not econom.has_feature("resultGuarantee")

    premium = get_plan_limits("premium")
    assert premium.ai_requests_per_day == UNLIMITED
    assert all(premium.features.values())


def test_plan_matrix_is_read_only():
    with pytest.raises(TypeError):
        PLAN_LIMITS[SubscriptionPlan.FREE] = PLAN_LIMITS[SubscriptionPlan.PREMIUM]
    with pytest.raises(TypeError):
        PLAN_LIMITS[SubscriptionPlan.FREE].features["aiChat"] = True


@pytest.mark.parametrize("raw", ["gold", "", None, "  "])
def test_unknown_plan_values_fall_back_to_free(raw):
    assert parse_plan(raw) == SubscriptionPlan.FREE


def test_parse_plan_normalizes_case():
    assert parse_plan(" Premium ") == SubscriptionPlan.PREMIUM


def test_catalog_prices_and_durations():
    assert get_plan_offer("start").price == 600
    assert get_plan_offer("start").duration_days == 30
    assert get_plan_offer("econom").duration_days == 270
    assert get_plan_offer("premium").duration_days == 180
    assert get_plan_offer("free").duration_days is None
    assert [offer.plan for offer in list_plan_offers()] == list(SubscriptionPlan)


def test_plans_with_capability():
    assert plans_with_capability(Capability.AI_CHAT) == [
        SubscriptionPlan.START,
        SubscriptionPlan.ECONOM,
        SubscriptionPlan.PREMIUM,
    ]
    assert plans_with_capability(Capability.PERSONAL_STATS) == [
        SubscriptionPlan.ECONOM,
        SubscriptionPlan.PREMIUM,
    ]
