"""
examprep/models/plan.py

Plan limits and catalog entries. Built once from a static table.
"""

from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, field_validator

from examprep.models.subscription import SubscriptionPlan

ALL_SUBJECTS = "all"
UNLIMITED = -1


class Capability(str, Enum):
    """Feature gates checked by the entitlement engine."""
    AI_CHAT = "aiChat"
    TASKS = "tasks"
    VARIANTS = "variants"
    TRAINERS = "trainers"
    PERSONAL_STATS = "personalStats"


class PlanLimits(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    ai_requests_per_day: int
    tasks_per_day: int
    subjects: Union[Tuple[str, ...], str]  # tuple of subject names or ALL_SUBJECTS
    features: Mapping[str, bool]

    @field_validator("features", mode="after")
    @classmethod
    def _freeze_features(cls, value: Mapping[str, bool]) -> Mapping[str, bool]:
        return MappingProxyType(dict(value))

    @property
    def allows_all_subjects(self) -> bool:
        return self.subjects == ALL_SUBJECTS

    def has_feature(self, feature: str) -> bool:
        return self.features.get(feature) is True


class PlanOffer(BaseModel):
    """What a plan costs and how long a purchase lasts."""
    model_config = ConfigDict(frozen=True)

    plan: SubscriptionPlan
    name: str
    price: int  # roubles
    duration_days: Optional[int] = None  # None = does not expire
