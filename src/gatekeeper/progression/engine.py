"""Rank progression: threshold checks and the promotion apply step."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog

from gatekeeper.concurrency import KeyedLock
from gatekeeper.exceptions import StorageError
from gatekeeper.progression.definitions import RankDefinitionCache
from gatekeeper.progression.models import PlayerRank, RankDefinition
from gatekeeper.progression.ranks import DEFAULT_RANK_NAMES, RankNames, RankPosition, format_rank, rank_progress
from gatekeeper.redis_client import RANK_UP_CHANNEL, publish_event
from gatekeeper.storage.base import StorageBackend

if TYPE_CHECKING:
    from gatekeeper.rewards.dispatcher import RewardDispatcher

logger = structlog.get_logger()

AUTOMATIC_REASON = "Automatic progression"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def meets_requirements(rank: PlayerRank, definition: RankDefinition) -> bool:
    """Both thresholds of the current position must be reached; one alone never promotes."""
    return (
        rank.play_time_minutes >= definition.required_time_minutes
        and rank.achievements_completed >= definition.required_achievements
    )


class RankProgressionEngine:
    """Loads player ranks, accrues progress and applies promotions.

    All read-modify-write sequences for one player run under that player's
    lock. Promotion is durable once ``save_player_rank`` succeeds; rewards
    and role sync are handed to the dispatcher as background work and can
    never undo it.
    """

    def __init__(
        self,
        storage: StorageBackend,
        definitions: RankDefinitionCache,
        names: RankNames = DEFAULT_RANK_NAMES,
        dispatcher: RewardDispatcher | None = None,
        redis: object | None = None,
        enabled: bool = True,
        clock: Callable[[], datetime] = _utcnow,
        locks: KeyedLock | None = None,
    ) -> None:
        self.storage = storage
        self.definitions = definitions
        self.names = names
        self.dispatcher = dispatcher
        self.redis = redis
        self.enabled = enabled
        self._clock = clock
        self._locks = locks or KeyedLock()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def get_player_rank(self, player_uuid: str) -> PlayerRank:
        """Load a player's rank, repairing or creating it as needed.

        Out-of-range positions are clamped and the corrected row is written
        back; a player with no row gets the starting rank.
        """
        rank = await self.storage.get_player_rank(player_uuid)
        if rank is None:
            rank = PlayerRank.starting(player_uuid, now=self._clock())
            await self.storage.save_player_rank(rank)
            logger.info("player_rank_created", player_uuid=player_uuid)
            return rank

        original = (rank.main_rank, rank.sub_rank)
        if rank.clamp(self.names):
            logger.warning(
                "player_rank_clamped",
                player_uuid=player_uuid,
                stored=original,
                corrected=(rank.main_rank, rank.sub_rank),
            )
            await self.storage.save_player_rank(rank)
        return rank

    # ------------------------------------------------------------------
    # Progress accrual
    # ------------------------------------------------------------------

    async def add_xp(self, player_uuid: str, amount: int, source: str) -> bool:
        """Add XP to the player's progression pool. Returns True if it caused a promotion."""
        async with self._locks.hold(player_uuid):
            rank = await self.get_player_rank(player_uuid)
            rank.play_time_minutes += amount
            await self.storage.save_player_rank(rank)
            await self.storage.log_xp_gain(player_uuid, amount, source)
            return await self._try_promote(rank, AUTOMATIC_REASON) is not None

    async def add_achievement(self, player_uuid: str, achievement: str) -> bool:
        """Count one completed achievement. Returns True if it caused a promotion."""
        async with self._locks.hold(player_uuid):
            rank = await self.get_player_rank(player_uuid)
            rank.achievements_completed += 1
            await self.storage.save_player_rank(rank)
            await self.storage.log_achievement(player_uuid, achievement)
            return await self._try_promote(rank, AUTOMATIC_REASON) is not None

    async def check_promotion(self, player_uuid: str) -> RankPosition | None:
        """Promote the player one step if they meet their current thresholds."""
        async with self._locks.hold(player_uuid):
            rank = await self.get_player_rank(player_uuid)
            return await self._try_promote(rank, AUTOMATIC_REASON)

    async def promote(self, player_uuid: str, reason: str = "Manual promotion") -> RankPosition | None:
        """Move the player to the next position regardless of thresholds.

        Returns the new position, or None at the terminal rank.
        """
        async with self._locks.hold(player_uuid):
            rank = await self.get_player_rank(player_uuid)
            return await self._apply_promotion(rank, reason)

    async def mark_verified(self, player_uuid: str) -> PlayerRank:
        """Stamp ``verified_at`` on the player's rank (creating it if needed)."""
        async with self._locks.hold(player_uuid):
            rank = await self.get_player_rank(player_uuid)
            rank.verified_at = self._clock()
            await self.storage.save_player_rank(rank)
            logger.info("player_rank_verified", player_uuid=player_uuid)
            return rank

    # ------------------------------------------------------------------
    # Promotion
    # ------------------------------------------------------------------

    async def _try_promote(self, rank: PlayerRank, reason: str) -> RankPosition | None:
        if not self.enabled:
            return None
        definition = self.definitions.get(rank.main_rank, rank.sub_rank)
        if definition is None:
            logger.error(
                "rank_definition_missing",
                player_uuid=rank.player_uuid,
                main_rank=rank.main_rank,
                sub_rank=rank.sub_rank,
            )
            return None
        if not meets_requirements(rank, definition):
            return None
        return await self._apply_promotion(rank, reason)

    async def _apply_promotion(self, rank: PlayerRank, reason: str) -> RankPosition | None:
        next_definition = self.definitions.next_definition(rank.main_rank, rank.sub_rank)
        if next_definition is None:
            logger.debug("player_at_max_rank", player_uuid=rank.player_uuid)
            return None

        previous = rank.position
        previous_promotion = rank.last_promotion
        rank.main_rank = next_definition.main_rank
        rank.sub_rank = next_definition.sub_rank
        rank.last_promotion = self._clock()

        try:
            saved = await self.storage.save_player_rank(rank)
        except StorageError:
            saved = False
            logger.error("rank_promotion_save_failed", player_uuid=rank.player_uuid, exc_info=True)
        if not saved:
            rank.main_rank, rank.sub_rank = previous.main_rank, previous.sub_rank
            rank.last_promotion = previous_promotion
            return None

        new_position = rank.position
        logger.info(
            "player_promoted",
            player_uuid=rank.player_uuid,
            from_rank=format_rank(previous.main_rank, previous.sub_rank, self.names),
            to_rank=format_rank(new_position.main_rank, new_position.sub_rank, self.names),
            reason=reason,
        )

        try:
            await self.storage.log_rank_promotion(
                rank.player_uuid,
                previous.main_rank,
                previous.sub_rank,
                new_position.main_rank,
                new_position.sub_rank,
                reason,
            )
        except StorageError:
            logger.warning("rank_promotion_log_failed", player_uuid=rank.player_uuid, exc_info=True)

        await self._announce(rank, previous)
        if self.dispatcher is not None:
            self.dispatcher.schedule_promotion(rank, previous, next_definition)
        return new_position

    async def _announce(self, rank: PlayerRank, previous: RankPosition) -> None:
        if self.redis is None:
            return
        try:
            await publish_event(
                self.redis,
                RANK_UP_CHANNEL,
                {
                    "player_uuid": rank.player_uuid,
                    "from_main_rank": previous.main_rank,
                    "from_sub_rank": previous.sub_rank,
                    "main_rank": rank.main_rank,
                    "sub_rank": rank.sub_rank,
                    "rank_name": format_rank(rank.main_rank, rank.sub_rank, self.names),
                },
            )
        except Exception:
            logger.warning("rank_up_publish_failed", player_uuid=rank.player_uuid, exc_info=True)

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def format_rank(self, rank: PlayerRank) -> str:
        return format_rank(rank.main_rank, rank.sub_rank, self.names)

    def progress(self, rank: PlayerRank) -> dict[str, Any]:
        """Lattice progress plus the thresholds for the next promotion, if known."""
        info = rank_progress(rank.main_rank, rank.sub_rank, self.names)
        definition = self.definitions.get(rank.main_rank, rank.sub_rank)
        next_definition = self.definitions.next_definition(rank.main_rank, rank.sub_rank)
        info["next_rank"] = next_definition.rank_name if next_definition else None
        info["required_time_minutes"] = definition.required_time_minutes if definition else None
        info["required_achievements"] = definition.required_achievements if definition else None
        return info
