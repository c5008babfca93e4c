"""Proxy hook endpoints: on-login and on-pre-server-connect."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from gatekeeper.dependencies import get_gate
from gatekeeper.proxy.schemas import GateResponse, LoginCheckRequest, ServerSwitchRequest
from gatekeeper.proxy.service import ProxyGate

router = APIRouter(prefix="/api/v1/proxy", tags=["Proxy"])


@router.post("/login", response_model=GateResponse)
async def login_check(body: LoginCheckRequest, gate: ProxyGate = Depends(get_gate)) -> GateResponse:
    decision = await gate.check_login(body.username, body.player_uuid)
    return GateResponse(allowed=decision.allowed, message=decision.message, confined_to=decision.confined_to)


@router.post("/pre-connect", response_model=GateResponse)
async def pre_connect_check(body: ServerSwitchRequest, gate: ProxyGate = Depends(get_gate)) -> GateResponse:
    decision = gate.check_server_switch(body.username, body.target_server)
    return GateResponse(allowed=decision.allowed, message=decision.message, confined_to=decision.confined_to)
