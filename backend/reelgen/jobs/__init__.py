"""Generation job persistence."""
from .store import JobStore

__all__ = ["JobStore"]
