"""Pydantic models for the proxy hook endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class LoginCheckRequest(BaseModel):
    username: str = Field(min_length=1, max_length=40)
    player_uuid: str | None = Field(default=None, max_length=36)


class ServerSwitchRequest(BaseModel):
    username: str = Field(min_length=1, max_length=40)
    target_server: str = Field(min_length=1, max_length=64)


class GateResponse(BaseModel):
    allowed: bool
    message: str | None = None
    confined_to: str | None = None
