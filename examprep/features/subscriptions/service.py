"""
examprep/features/subscriptions/service.py

Subscription persistence (caller side of the entitlement engine).

Handles:
- Reading a user's subscription (signup default: free/active)
- Explicit demotion write for passively expired subscriptions
- Test-mode plan activation and cancellation (no payment gateway)
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional
import logging

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError

from examprep.core.database import get_db_session, user_subscriptions
from examprep.core.errors import ValidationError
from examprep.features.entitlements.service import needs_demotion, normalize_now
from examprep.features.plans.service import get_plan_offer
from examprep.models.subscription import Subscription, SubscriptionPlan, SubscriptionStatus


logger = logging.getLogger("examprep")


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_to_subscription(row) -> Subscription:
    try:
        plan = SubscriptionPlan(row.plan)
    except ValueError:
        plan = SubscriptionPlan.FREE
    try:
        status = SubscriptionStatus(row.status)
    except ValueError:
        status = SubscriptionStatus.EXPIRED
    return Subscription(
        plan=plan,
        status=status,
        expires_at=_as_utc(row.expires_at),
        auto_renewal=bool(row.auto_renewal),
    )


def get_subscription(user_id: str) -> Subscription:
    """Return the stored subscription, creating the signup default if absent."""
    query = select(user_subscriptions).where(user_subscriptions.c.user_id == user_id)
    with get_db_session() as session:
        row = session.execute(query).first()
        if row:
            return _row_to_subscription(row)

        now = datetime.now(timezone.utc)
        try:
            session.execute(
                insert(user_subscriptions).values(
                    user_id=user_id,
                    plan=SubscriptionPlan.FREE.value,
                    status=SubscriptionStatus.ACTIVE.value,
                    expires_at=None,
                    auto_renewal=False,
                    started_at=now,
                    updated_at=now,
                )
            )
            session.commit()
        except IntegrityError:
            # Concurrent first request already created the row
            session.rollback()
            row = session.execute(query).first()
            if row is None:
                raise
            return _row_to_subscription(row)
    return Subscription()


def demote_expired(user_id: str, now: Optional[Any] = None) -> bool:
    """Persist expiry for a lapsed subscription. Returns True if a write happened."""
    ts = normalize_now(now)
    subscription = get_subscription(user_id)
    if not needs_demotion(subscription, ts):
        return False

    with get_db_session() as session:
        session.execute(
            update(user_subscriptions)
            .where(user_subscriptions.c.user_id == user_id)
            .values(
                plan=SubscriptionPlan.FREE.value,
                status=SubscriptionStatus.EXPIRED.value,
                updated_at=ts,
            )
        )
    logger.info(
        "[subscriptions] expired subscription demoted",
        extra={"user_id": user_id, "plan": subscription.plan.value},
    )
    return True


def activate_plan(user_id: str, plan: str, now: Optional[Any] = None) -> Subscription:
    """Activate a paid plan in test mode; replaces any current subscription.

    Raises:
        ValidationError: unknown plan or the free plan
    """
    try:
        target = SubscriptionPlan(str(plan or "").strip().lower())
    except ValueError:
        raise ValidationError("Неверный план подписки") from None
    if target == SubscriptionPlan.FREE:
        raise ValidationError("Нельзя оформить бесплатную подписку")

    ts = normalize_now(now)
    offer = get_plan_offer(target)
    expires_at = ts + timedelta(days=offer.duration_days) if offer.duration_days else None

    get_subscription(user_id)  # ensure row exists
    with get_db_session() as session:
        session.execute(
            update(user_subscriptions)
            .where(user_subscriptions.c.user_id == user_id)
            .values(
                plan=target.value,
                status=SubscriptionStatus.ACTIVE.value,
                expires_at=expires_at,
                auto_renewal=False,
                started_at=ts,
                cancelled_at=None,
                cancellation_reason=None,
                updated_at=ts,
            )
        )
    logger.info("[subscriptions] plan activated", extra={"user_id": user_id, "plan": target.value})
    return Subscription(plan=target, status=SubscriptionStatus.ACTIVE, expires_at=expires_at)


def cancel_subscription(user_id: str, reason: Optional[str] = None, now: Optional[Any] = None) -> Subscription:
    """Mark the subscription cancelled; the engine then treats the user as free."""
    ts = normalize_now(now)
    current = get_subscription(user_id)
    with get_db_session() as session:
        session.execute(
            update(user_subscriptions)
            .where(user_subscriptions.c.user_id == user_id)
            .values(
                status=SubscriptionStatus.CANCELLED.value,
                auto_renewal=False,
                cancelled_at=ts,
                cancellation_reason=reason,
                updated_at=ts,
            )
        )
    logger.info("[subscriptions] subscription cancelled", extra={"user_id": user_id, "plan": current.plan.value})
    return current.model_copy(update={"status": SubscriptionStatus.CANCELLED, "auto_renewal": False})
