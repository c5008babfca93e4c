"""Verification endpoints: request a code, submit a code, claim a code."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from gatekeeper.dependencies import get_sessions
from gatekeeper.verification.schemas import (
    BindRequest,
    BindResponse,
    CodeRequest,
    CodeResponse,
    SubmitRequest,
    SubmitResponse,
)
from gatekeeper.verification.sessions import SessionRegistry

router = APIRouter(prefix="/api/v1/verification", tags=["Verification"])


@router.post("/request", response_model=CodeResponse)
async def request_code(body: CodeRequest, sessions: SessionRegistry = Depends(get_sessions)) -> CodeResponse:
    """Chat-platform "request a code": issue (or re-issue) the player's pairing code."""
    result = await sessions.create_session(body.username, body.external_id, body.external_name)
    return CodeResponse(
        username=body.username,
        code=result.code,
        expires_at=result.expires_at,
        created=result.created,
    )


@router.post("/submit", response_model=SubmitResponse)
async def submit_code(body: SubmitRequest, sessions: SessionRegistry = Depends(get_sessions)) -> SubmitResponse:
    """In-game "submit a code": validate, then complete the verification."""
    if not await sessions.validate_code(body.username, body.code):
        return SubmitResponse(verified=False, message="Invalid or expired verification code.")
    if not await sessions.complete_verification(body.username, body.player_uuid):
        return SubmitResponse(verified=False, message="Verification could not be saved. Please try again.")
    return SubmitResponse(verified=True, message="Verification complete. Welcome!")


@router.post("/bind", response_model=BindResponse)
async def bind_code(body: BindRequest, sessions: SessionRegistry = Depends(get_sessions)) -> BindResponse:
    """Claim an in-game issued code from the chat platform by binding an identity to it."""
    session = sessions.find_by_code(body.code.strip().upper())
    if session is None:
        return BindResponse(bound=False)
    bound = await sessions.bind_identity_to_session(session.username, body.external_id, body.external_name)
    return BindResponse(bound=bound, username=session.username if bound else None)
