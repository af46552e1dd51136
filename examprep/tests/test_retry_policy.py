"""Tests for the retry policy and worst-case budget."""

import pytest

from examprep.core.config import Settings
from examprep.features.ai.retry import RetryPolicy
from examprep.features.ai.service import worst_case_call_seconds


def test_default_policy():
    policy = RetryPolicy()
    assert policy.max_attempts == 3
    assert list(policy.delays()) == [2.0, 4.0]


def test_delay_doubles_and_caps():
    policy = RetryPolicy(max_attempts=6, base_delay=2.0, max_delay=15.0)
    assert [policy.delay_for(n) for n in range(5)] == [2.0, 4.0, 8.0, 15.0, 15.0]
    assert list(policy.delays()) == [2.0, 4.0, 8.0, 15.0, 15.0]


def test_single_attempt_never_sleeps():
    assert list(RetryPolicy(max_attempts=1).delays()) == []


def test_invalid_policy_rejected():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(base_delay=-1)


def test_worst_case_seconds():
    policy = RetryPolicy()
    assert policy.worst_case_seconds(2.0, [30.0, 30.0, 30.0]) == 2.0 + 90.0 + 6.0


def test_worst_case_for_default_settings():
    cfg = Settings(_env_file=None)
    # probe + three local attempts + two sleeps
    assert worst_case_call_seconds(cfg) == 2.0 + 3 * 180.0 + 2.0 + 4.0
    assert worst_case_call_seconds(cfg) < cfg.AI_REQUEST_TIMEOUT_SECONDS


def test_worst_case_for_hosted_preferred():
    cfg = Settings(_env_file=None, AI_PROVIDER="openai")
    assert worst_case_call_seconds(cfg) == 3 * 30.0 + 2.0 + 4.0


def test_policy_from_settings():
    cfg = Settings(_env_file=None, AI_MAX_ATTEMPTS=4, AI_RETRY_BASE_DELAY_SECONDS=1.0, AI_RETRY_MAX_DELAY_SECONDS=3.0)
    assert list(RetryPolicy.from_settings(cfg).delays()) == [1.0, 2.0, 3.0]
