"""Generation request orchestration."""
from .orchestrator import GenerationOrchestrator, GenerationRequest, UsageSummary

__all__ = ["GenerationOrchestrator", "GenerationRequest", "UsageSummary"]
