"""Tests for subscription persistence (sqlite per test via conftest)."""

import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import event, insert, select, update

from examprep.core.database import get_db_session, get_engine, user_subscriptions
from examprep.core.errors import ValidationError
from examprep.features.subscriptions.service import (
    activate_plan,
    cancel_subscription,
    demote_expired,
    get_subscription,
)
from examprep.models.subscription import SubscriptionPlan, SubscriptionStatus

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _stored(user_id):
    with get_db_session() as session:
        return session.execute(
            select(user_subscriptions).where(user_subscriptions.c.user_id == user_id)
        ).first()


def test_new_user_gets_free_active_subscription():
    subscription = get_subscription("u-new")
    assert subscription.plan == SubscriptionPlan.FREE
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert _stored("u-new") is not None


def _before_subscription_insert(callback):
    """Run `callback` right before the signup INSERT reaches the database."""
    def listener(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("INSERT INTO USER_SUBSCRIPTIONS"):
            callback()
    return listener


def test_get_subscription_tolerates_row_created_concurrently():
    engine = get_engine()
    inserted = []

    def create_row_elsewhere():
        if inserted:
            return
        inserted.append(True)
        with engine.begin() as conn:
            conn.execute(
                insert(user_subscriptions).values(
                    user_id="u-race", plan="premium", status="active", auto_renewal=False
                )
            )

    listener = _before_subscription_insert(create_row_elsewhere)
    event.listen(engine, "before_cursor_execute", listener)
    try:
        subscription = get_subscription("u-race")
    finally:
        event.remove(engine, "before_cursor_execute", listener)

    assert subscription.plan == SubscriptionPlan.PREMIUM
    assert _stored("u-race").plan == "premium"


def test_concurrent_first_requests_share_one_row():
    engine = get_engine()
    barrier = threading.Barrier(2, timeout=5)
    listener = _before_subscription_insert(barrier.wait)
    results, errors = [], []

    def first_request():
        try:
            results.append(get_subscription("u-twice"))
        except Exception as exc:  # surfaced through the assertion below
            errors.append(exc)

    event.listen(engine, "before_cursor_execute", listener)
    try:
        threads = [threading.Thread(target=first_request) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)
    finally:
        event.remove(engine, "before_cursor_execute", listener)

    assert errors == []
    assert [s.plan for s in results] == [SubscriptionPlan.FREE, SubscriptionPlan.FREE]
    with get_db_session() as session:
        rows = session.execute(
            select(user_subscriptions).where(user_subscriptions.c.user_id == "u-twice")
        ).all()
    assert len(rows) == 1


def test_activate_plan_sets_expiry_from_catalog():
    subscription = activate_plan("u1", "start", now=NOW)
    assert subscription.plan == SubscriptionPlan.START
    assert subscription.expires_at == NOW + timedelta(days=30)

    stored = get_subscription("u1")
    assert stored.plan == SubscriptionPlan.START
    assert stored.status == SubscriptionStatus.ACTIVE
    assert stored.expires_at == NOW + timedelta(days=30)


@pytest.mark.parametrize("plan", ["free", "gold", ""])
def test_activate_plan_rejects_free_and_unknown(plan):
    with pytest.raises(ValidationError):
        activate_plan("u2", plan, now=NOW)


def test_demote_expired_writes_once():
    activate_plan("u3", "premium", now=NOW - timedelta(days=200))
    assert demote_expired("u3", now=NOW) is True

    row = _stored("u3")
    assert row.plan == "free"
    assert row.status == "expired"
    assert demote_expired("u3", now=NOW) is False


def test_demote_expired_leaves_current_subscription_alone():
    activate_plan("u4", "econom", now=NOW)
    assert demote_expired("u4", now=NOW + timedelta(days=1)) is False
    assert _stored("u4").plan == "econom"


def test_cancel_subscription_marks_cancelled():
    activate_plan("u5", "premium", now=NOW)
    subscription = cancel_subscription("u5", reason="too expensive", now=NOW)
    assert subscription.status == SubscriptionStatus.CANCELLED
    assert subscription.plan == SubscriptionPlan.PREMIUM

    row = _stored("u5")
    assert row.status == "cancelled"
    assert row.cancellation_reason == "too expensive"


def test_unknown_stored_values_are_read_defensively():
    get_subscription("u6")
    with get_db_session() as session:
        session.execute(
            update(user_subscriptions)
            .where(user_subscriptions.c.user_id == "u6")
            .values(plan="gold", status="weird")
        )
    subscription = get_subscription("u6")
    assert subscription.plan == SubscriptionPlan.FREE
    assert subscription.status == SubscriptionStatus.EXPIRED
