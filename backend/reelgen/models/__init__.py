"""SQLAlchemy ORM models for the reelgen backend.

This module exports all model classes for use throughout the application.
"""
from .base import Base, TimestampMixin
from .generation_job import (
    TERMINAL_STATUSES,
    GenerationJob,
    GenerationKind,
    JobStatus,
)
from .usage import UsageRecord
from .user import User

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # User
    "User",
    # Usage
    "UsageRecord",
    # Generation jobs
    "GenerationJob",
    "GenerationKind",
    "JobStatus",
    "TERMINAL_STATUSES",
]
