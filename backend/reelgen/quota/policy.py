"""Plan limits and effective-plan resolution.

Everything here is pure: the evaluation time is always passed in, nothing
reads the clock or touches storage.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Protocol


class Plan(str, Enum):
    """Subscription tiers."""
    FREE = "free"
    PRO = "pro"
    PRO_PLUS = "pro-plus"


DEFAULT_PLAN = Plan.FREE


@dataclass(frozen=True)
class Limits:
    """Numeric limits granted by a plan.

    ``max_generations_per_day`` is ``None`` for unlimited plans and applies
    to each generation kind separately.
    """
    max_prompt_words: int
    max_generations_per_day: Optional[int]
    max_media_length_seconds: int


PLAN_LIMITS: Dict[Plan, Limits] = {
    Plan.FREE: Limits(
        max_prompt_words=50,
        max_generations_per_day=1,
        max_media_length_seconds=10,
    ),
    Plan.PRO: Limits(
        max_prompt_words=200,
        max_generations_per_day=5,
        max_media_length_seconds=60,
    ),
    Plan.PRO_PLUS: Limits(
        max_prompt_words=500,
        max_generations_per_day=None,
        max_media_length_seconds=300,
    ),
}


class PlanHolder(Protocol):
    plan: str
    plan_expires_at: Optional[datetime]


def normalize_plan(value: object) -> Plan:
    text = str(value or "").strip().lower()
    try:
        return Plan(text)
    except ValueError:
        return DEFAULT_PLAN


def _as_utc(value: datetime) -> datetime:
    # Some backends hand back naive timestamps; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def effective_plan(user: PlanHolder, now: datetime) -> Plan:
    """Return the plan that applies to ``user`` at ``now``.

    A paid plan whose expiry lies in the past counts as free.
    """
    plan = normalize_plan(getattr(user, "plan", None))
    if plan is Plan.FREE:
        return plan
    expires_at = getattr(user, "plan_expires_at", None)
    if expires_at is not None and _as_utc(expires_at) < _as_utc(now):
        return Plan.FREE
    return plan


def limits_for_plan(plan: Plan) -> Limits:
    return PLAN_LIMITS[plan]


def limits_for(user: PlanHolder, now: datetime) -> Limits:
    """Return the limits granted to ``user`` at ``now``."""
    return PLAN_LIMITS[effective_plan(user, now)]


def count_words(prompt: str) -> int:
    return len(prompt.split())
