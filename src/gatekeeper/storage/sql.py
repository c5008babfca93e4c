"""SQLAlchemy implementation of the storage backend."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gatekeeper.db.models import (
    AchievementLogRow,
    LinkedIdentityRow,
    PlayerRankRow,
    PlayerVerificationRow,
    RankDefinitionRow,
    RankPromotionRow,
    WhitelistRow,
    XPEventRow,
    XPGainLogRow,
)
from gatekeeper.exceptions import StorageError
from gatekeeper.progression.models import PlayerRank, RankDefinition, RankRewards, XPEvent
from gatekeeper.storage.base import StorageBackend

logger = structlog.get_logger()


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_player_rank(row: PlayerRankRow) -> PlayerRank:
    return PlayerRank(
        player_uuid=row.player_uuid,
        main_rank=row.main_rank,
        sub_rank=row.sub_rank,
        join_date=_as_utc(row.join_date),  # type: ignore[arg-type]
        play_time_minutes=row.play_time_minutes,
        achievements_completed=row.achievements_completed,
        last_promotion=_as_utc(row.last_promotion),
        verified_at=_as_utc(row.verified_at),
    )


def _to_rank_definition(row: RankDefinitionRow) -> RankDefinition:
    return RankDefinition(
        main_rank=row.main_rank,
        sub_rank=row.sub_rank,
        rank_name=row.rank_name,
        required_time_minutes=row.required_time_minutes,
        required_achievements=row.required_achievements,
        discord_role_id=row.discord_role_id,
        rewards=RankRewards(
            economy_amount=row.rewards_economy or 0,
            commands=tuple(row.rewards_commands or ()),
        ),
    )


def _to_xp_event(row: XPEventRow) -> XPEvent:
    return XPEvent(
        player_uuid=row.player_uuid,
        event_type=row.event_type,
        event_source=row.event_source,
        xp_gained=row.xp_gained,
        timestamp=_as_utc(row.timestamp),  # type: ignore[arg-type]
        server_name=row.server_name,
        metadata=row.event_metadata,
    )


class SqlStorage(StorageBackend):
    """Storage backend over an async SQLAlchemy session factory.

    Every call runs in its own short session; SQLAlchemy errors surface as
    ``StorageError``.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("storage_error", error=str(exc), exc_info=exc)
            raise StorageError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Progression
    # ------------------------------------------------------------------

    async def get_player_rank(self, player_uuid: str) -> PlayerRank | None:
        async with self._session() as db:
            row = await db.get(PlayerRankRow, player_uuid)
            return _to_player_rank(row) if row else None

    async def save_player_rank(self, rank: PlayerRank) -> bool:
        async with self._session() as db:
            row = await db.get(PlayerRankRow, rank.player_uuid)
            if row is None:
                row = PlayerRankRow(player_uuid=rank.player_uuid)
                db.add(row)
            row.main_rank = rank.main_rank
            row.sub_rank = rank.sub_rank
            row.join_date = rank.join_date
            row.play_time_minutes = rank.play_time_minutes
            row.achievements_completed = rank.achievements_completed
            row.last_promotion = rank.last_promotion
            row.verified_at = rank.verified_at
            await db.commit()
            return True

    async def get_all_rank_definitions(self) -> list[RankDefinition]:
        async with self._session() as db:
            result = await db.execute(
                select(RankDefinitionRow).order_by(RankDefinitionRow.main_rank, RankDefinitionRow.sub_rank)
            )
            return [_to_rank_definition(row) for row in result.scalars()]

    async def log_rank_promotion(
        self,
        player_uuid: str,
        from_main: int,
        from_sub: int,
        to_main: int,
        to_sub: int,
        reason: str,
    ) -> None:
        async with self._session() as db:
            db.add(RankPromotionRow(
                player_uuid=player_uuid,
                from_main_rank=from_main,
                from_sub_rank=from_sub,
                to_main_rank=to_main,
                to_sub_rank=to_sub,
                reason=reason[:128],
                created_at=datetime.now(timezone.utc),
            ))
            await db.commit()

    # ------------------------------------------------------------------
    # XP
    # ------------------------------------------------------------------

    async def record_xp_event(self, event: XPEvent) -> None:
        async with self._session() as db:
            db.add(XPEventRow(
                player_uuid=event.player_uuid,
                event_type=event.event_type,
                event_source=event.event_source,
                xp_gained=event.xp_gained,
                timestamp=event.timestamp,
                server_name=event.server_name,
                event_metadata=event.metadata,
            ))
            await db.commit()

    async def get_xp_event_count(
        self,
        player_uuid: str,
        event_type: str,
        event_source: str,
        start: datetime,
        end: datetime,
    ) -> int:
        async with self._session() as db:
            result = await db.execute(
                select(func.count())
                .select_from(XPEventRow)
                .where(
                    XPEventRow.player_uuid == player_uuid,
                    XPEventRow.event_type == event_type,
                    XPEventRow.event_source == event_source,
                    XPEventRow.timestamp >= start,
                    XPEventRow.timestamp <= end,
                )
            )
            return int(result.scalar_one())

    async def log_xp_gain(self, player_uuid: str, amount: int, source: str) -> None:
        async with self._session() as db:
            db.add(XPGainLogRow(
                player_uuid=player_uuid,
                amount=amount,
                source=source[:128],
                created_at=datetime.now(timezone.utc),
            ))
            await db.commit()

    async def log_achievement(self, player_uuid: str, achievement: str) -> None:
        async with self._session() as db:
            db.add(AchievementLogRow(
                player_uuid=player_uuid,
                achievement=achievement[:128],
                created_at=datetime.now(timezone.utc),
            ))
            await db.commit()

    async def get_recent_xp_events(self, player_uuid: str, limit: int = 20) -> list[XPEvent]:
        async with self._session() as db:
            result = await db.execute(
                select(XPEventRow)
                .where(XPEventRow.player_uuid == player_uuid)
                .order_by(XPEventRow.timestamp.desc(), XPEventRow.id.desc())
                .limit(limit)
            )
            return [_to_xp_event(row) for row in result.scalars()]

    async def get_total_xp(self, player_uuid: str) -> int:
        async with self._session() as db:
            result = await db.execute(
                select(func.coalesce(func.sum(XPEventRow.xp_gained), 0)).where(
                    XPEventRow.player_uuid == player_uuid
                )
            )
            return int(result.scalar_one())

    # ------------------------------------------------------------------
    # Whitelist / verification
    # ------------------------------------------------------------------

    async def is_whitelisted(self, username: str, player_uuid: str | None = None) -> bool:
        conditions = [func.lower(WhitelistRow.username) == username.lower()]
        if player_uuid:
            conditions.append(WhitelistRow.player_uuid == player_uuid)
        async with self._session() as db:
            result = await db.execute(select(WhitelistRow.id).where(or_(*conditions)).limit(1))
            return result.scalar_one_or_none() is not None

    async def add_to_whitelist(self, username: str, player_uuid: str) -> bool:
        async with self._session() as db:
            result = await db.execute(select(WhitelistRow).where(WhitelistRow.player_uuid == player_uuid))
            row = result.scalar_one_or_none()
            if row is not None:
                row.username = username
            else:
                db.add(WhitelistRow(
                    username=username,
                    player_uuid=player_uuid,
                    added_at=datetime.now(timezone.utc),
                ))
            await db.commit()
            return True

    async def update_verification_state(self, player_uuid: str, state: str) -> bool:
        async with self._session() as db:
            row = await db.get(PlayerVerificationRow, player_uuid)
            now = datetime.now(timezone.utc)
            if row is None:
                db.add(PlayerVerificationRow(player_uuid=player_uuid, state=state, updated_at=now))
            else:
                row.state = state
                row.updated_at = now
            await db.commit()
            return True

    async def link_external_identity(self, player_uuid: str, external_id: str, external_name: str | None) -> bool:
        async with self._session() as db:
            row = await db.get(LinkedIdentityRow, player_uuid)
            now = datetime.now(timezone.utc)
            if row is None:
                db.add(LinkedIdentityRow(
                    player_uuid=player_uuid,
                    external_id=external_id,
                    external_name=external_name,
                    linked_at=now,
                ))
            else:
                row.external_id = external_id
                row.external_name = external_name
                row.linked_at = now
            try:
                await db.commit()
            except IntegrityError:
                # external_id already bound to another player
                await db.rollback()
                logger.warning("identity_already_linked", player_uuid=player_uuid, external_id=external_id)
                return False
            return True

    async def get_player_name(self, player_uuid: str) -> str | None:
        async with self._session() as db:
            result = await db.execute(
                select(WhitelistRow.username).where(WhitelistRow.player_uuid == player_uuid).limit(1)
            )
            return result.scalar_one_or_none()

    async def get_external_id(self, player_uuid: str) -> str | None:
        async with self._session() as db:
            row = await db.get(LinkedIdentityRow, player_uuid)
            return row.external_id if row else None
