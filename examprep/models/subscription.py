"""
examprep/models/subscription.py

Per-user subscription state as read from storage.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class SubscriptionPlan(str, Enum):
    FREE = "free"
    START = "start"
    ECONOM = "econom"
    PREMIUM = "premium"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    PENDING = "pending"


class Subscription(BaseModel):
    """
    Subscription as stored for a user.

    The stored `status` is not trusted on its own: expiry is a
    time-dependent predicate, so callers ask `is_active_at(now)`.
    """
    model_config = ConfigDict(frozen=True)

    plan: SubscriptionPlan = SubscriptionPlan.FREE
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    expires_at: Optional[datetime] = None
    auto_renewal: bool = False

    def is_active_at(self, now: datetime) -> bool:
        if self.status != SubscriptionStatus.ACTIVE:
            return False
        if self.expires_at is None:
            return True
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at > now
