"""Pydantic request/response models for XP and rank endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


# --- XP ---


class XPEventRequest(BaseModel):
    player_uuid: str = Field(min_length=32, max_length=36)
    event_type: str = Field(min_length=1, max_length=32)
    event_source: str = Field(min_length=1, max_length=128)
    base_xp: int = Field(ge=0, le=100_000)
    server_name: str | None = Field(default=None, max_length=64)
    metadata: dict[str, Any] | None = None


class XPEventResponse(BaseModel):
    accepted: bool


class XPHistoryEntry(BaseModel):
    event_type: str
    event_source: str
    xp_gained: int
    timestamp: datetime
    server_name: str | None = None


class XPHistoryResponse(BaseModel):
    player_uuid: str
    total_xp: int
    events: list[XPHistoryEntry]
    rate_limits: dict[str, Any]


# --- Ranks ---


class RankResponse(BaseModel):
    player_uuid: str
    main_rank: int
    sub_rank: int
    rank_name: str
    play_time_minutes: int
    achievements_completed: int
    last_promotion: datetime | None = None
    verified_at: datetime | None = None
    progress: dict[str, Any]


class RankDefinitionEntry(BaseModel):
    main_rank: int
    sub_rank: int
    rank_name: str
    required_time_minutes: int
    required_achievements: int


class RankDefinitionsResponse(BaseModel):
    definitions: list[RankDefinitionEntry]
    total: int
