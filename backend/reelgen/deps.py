"""FastAPI dependencies that assemble the generation components per request."""
from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.reelgen.accounts import UserDirectory
from backend.reelgen.generation import GenerationOrchestrator
from backend.reelgen.jobs import JobStore
from backend.reelgen.providers import ProviderGateway, get_provider_gateway
from backend.reelgen.quota import UsageLedger
from backend.reelgen.utils.db import get_session_factory


def get_gateway() -> ProviderGateway:
    return get_provider_gateway()


def get_job_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> JobStore:
    return JobStore(session_factory)


def get_orchestrator(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    gateway: ProviderGateway = Depends(get_gateway),
) -> GenerationOrchestrator:
    return GenerationOrchestrator(
        users=UserDirectory(session_factory),
        ledger=UsageLedger(session_factory),
        gateway=gateway,
        jobs=JobStore(session_factory),
    )
