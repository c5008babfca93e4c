"""Pydantic request/response models for verification endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class CodeRequest(BaseModel):
    username: str = Field(min_length=1, max_length=32)
    external_id: str | None = Field(default=None, max_length=32)
    external_name: str | None = Field(default=None, max_length=100)


class CodeResponse(BaseModel):
    username: str
    code: str
    expires_at: datetime
    created: bool


class SubmitRequest(BaseModel):
    username: str = Field(min_length=1, max_length=32)
    player_uuid: str = Field(min_length=32, max_length=36)
    code: str = Field(min_length=1, max_length=16)


class SubmitResponse(BaseModel):
    verified: bool
    message: str


class BindRequest(BaseModel):
    code: str = Field(min_length=1, max_length=16)
    external_id: str = Field(min_length=1, max_length=32)
    external_name: str | None = Field(default=None, max_length=100)


class BindResponse(BaseModel):
    bound: bool
    username: str | None = None
