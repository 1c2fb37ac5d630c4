from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..auth import UserPrincipal, get_current_user
from ..deps import get_orchestrator
from ..generation import GenerationOrchestrator


router = APIRouter(
    prefix="/usage",
    tags=["usage"],
)


class LimitsView(BaseModel):
    max_prompt_words: int = Field(alias="maxPromptWords")
    max_generations_per_day: Optional[int] = Field(alias="maxGenerationsPerDay")
    max_media_length_seconds: int = Field(alias="maxMediaLengthSeconds")

    class Config:
        populate_by_name = True


class CountsView(BaseModel):
    video: Optional[int]
    audio: Optional[int]


class UsageView(BaseModel):
    plan: str
    day: date
    limits: LimitsView
    used: CountsView
    remaining: CountsView


@router.get(
    "/today",
    response_model=UsageView,
    summary="Effective plan, limits and today's usage for the caller",
)
async def usage_today(
    user: UserPrincipal = Depends(get_current_user),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> UsageView:
    summary = await orchestrator.usage_today(user.id)
    limit = summary.limits.max_generations_per_day

    def remaining(used: int) -> Optional[int]:
        return None if limit is None else max(0, limit - used)

    return UsageView(
        plan=summary.plan.value,
        day=summary.usage.day,
        limits=LimitsView(
            max_prompt_words=summary.limits.max_prompt_words,
            max_generations_per_day=limit,
            max_media_length_seconds=summary.limits.max_media_length_seconds,
        ),
        used=CountsView(video=summary.usage.video_count, audio=summary.usage.audio_count),
        remaining=CountsView(
            video=remaining(summary.usage.video_count),
            audio=remaining(summary.usage.audio_count),
        ),
    )
