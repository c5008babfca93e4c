"""XP ingestion and rank endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from gatekeeper.dependencies import Services, get_ledger, get_progression, get_services
from gatekeeper.progression.engine import RankProgressionEngine
from gatekeeper.progression.schemas import (
    RankDefinitionEntry,
    RankDefinitionsResponse,
    RankResponse,
    XPEventRequest,
    XPEventResponse,
    XPHistoryEntry,
    XPHistoryResponse,
)
from gatekeeper.progression.xp_ledger import XPLedger

router = APIRouter(prefix="/api/v1", tags=["Progression"])


# ── XP ──


@router.post("/xp/events", response_model=XPEventResponse)
async def ingest_xp_event(body: XPEventRequest, ledger: XPLedger = Depends(get_ledger)) -> XPEventResponse:
    """Record a gameplay XP event. Rate-limited events are silently not accepted."""
    accepted = await ledger.process_xp_gain(
        body.player_uuid,
        body.event_type,
        body.event_source,
        body.base_xp,
        server_name=body.server_name,
        metadata=body.metadata,
    )
    return XPEventResponse(accepted=accepted)


@router.get("/xp/{player_uuid}/history", response_model=XPHistoryResponse)
async def xp_history(
    player_uuid: str,
    limit: int = Query(20, ge=1, le=100),
    services: Services = Depends(get_services),
) -> XPHistoryResponse:
    events = await services.storage.get_recent_xp_events(player_uuid, limit)
    total = await services.storage.get_total_xp(player_uuid)
    return XPHistoryResponse(
        player_uuid=player_uuid,
        total_xp=total,
        events=[
            XPHistoryEntry(
                event_type=e.event_type,
                event_source=e.event_source,
                xp_gained=e.xp_gained,
                timestamp=e.timestamp,
                server_name=e.server_name,
            )
            for e in events
        ],
        rate_limits=services.ledger.get_rate_limit_info(player_uuid),
    )


# ── Ranks ──


@router.get("/ranks", response_model=RankDefinitionsResponse)
async def list_rank_definitions(services: Services = Depends(get_services)) -> RankDefinitionsResponse:
    definitions = services.definitions.all()
    return RankDefinitionsResponse(
        definitions=[
            RankDefinitionEntry(
                main_rank=d.main_rank,
                sub_rank=d.sub_rank,
                rank_name=d.rank_name,
                required_time_minutes=d.required_time_minutes,
                required_achievements=d.required_achievements,
            )
            for d in definitions
        ],
        total=len(definitions),
    )


@router.post("/ranks/reload", response_model=RankDefinitionsResponse)
async def reload_rank_definitions(services: Services = Depends(get_services)) -> RankDefinitionsResponse:
    """Rebuild the rank definition cache from storage."""
    await services.definitions.reload(services.storage)
    return await list_rank_definitions(services)


@router.get("/ranks/{player_uuid}", response_model=RankResponse)
async def get_player_rank(
    player_uuid: str,
    progression: RankProgressionEngine = Depends(get_progression),
) -> RankResponse:
    rank = await progression.get_player_rank(player_uuid)
    return RankResponse(
        player_uuid=rank.player_uuid,
        main_rank=rank.main_rank,
        sub_rank=rank.sub_rank,
        rank_name=progression.format_rank(rank),
        play_time_minutes=rank.play_time_minutes,
        achievements_completed=rank.achievements_completed,
        last_promotion=rank.last_promotion,
        verified_at=rank.verified_at,
        progress=progression.progress(rank),
    )
