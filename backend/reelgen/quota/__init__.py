"""Quota policy and the daily usage ledger."""
from .ledger import UsageLedger, UsageSnapshot
from .policy import (
    DEFAULT_PLAN,
    PLAN_LIMITS,
    Limits,
    Plan,
    count_words,
    effective_plan,
    limits_for,
    limits_for_plan,
    normalize_plan,
)

__all__ = [
    "DEFAULT_PLAN",
    "PLAN_LIMITS",
    "Limits",
    "Plan",
    "UsageLedger",
    "UsageSnapshot",
    "count_words",
    "effective_plan",
    "limits_for",
    "limits_for_plan",
    "normalize_plan",
]
