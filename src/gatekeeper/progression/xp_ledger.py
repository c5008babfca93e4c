"""Rate-limited XP ingestion.

An event is accepted only if it clears the per-key cooldown and all three
trailing windows (minute / hour / day). Window counts come from the
persisted event log so limits survive restarts; the cooldown lives in
memory. Rate limit key = (player uuid, event type, event source).
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import structlog

from gatekeeper.concurrency import KeyedLock
from gatekeeper.exceptions import StorageError
from gatekeeper.progression.achievements import (
    CATALOG_EVENT_TYPE,
    AchievementCatalog,
    CatalogMultipliers,
    XPModifiers,
)
from gatekeeper.progression.models import XPEvent
from gatekeeper.storage.base import StorageBackend

if TYPE_CHECKING:
    from gatekeeper.progression.engine import RankProgressionEngine

logger = structlog.get_logger()

ACHIEVEMENT_EVENT_TYPES = frozenset({"advancement", CATALOG_EVENT_TYPE})
COOLDOWN_RETENTION = timedelta(days=1)


@dataclass(frozen=True)
class RateLimitConfig:
    enabled: bool = True
    cooldown_seconds: float = 5
    max_per_minute: int = 10
    max_per_hour: int = 100
    max_per_day: int = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def rate_limit_key(player_uuid: str, event_type: str, event_source: str) -> str:
    return f"{player_uuid}:{event_type}:{event_source}"


class XPLedger:
    """Validates, scores and records XP-gain events."""

    def __init__(
        self,
        storage: StorageBackend,
        rate_limits: RateLimitConfig | None = None,
        modifiers: XPModifiers | None = None,
        catalog: AchievementCatalog | None = None,
        multipliers: CatalogMultipliers | None = None,
        catalog_enabled: bool = True,
        progression: RankProgressionEngine | None = None,
        clock: Callable[[], datetime] = _utcnow,
        locks: KeyedLock | None = None,
    ) -> None:
        self.storage = storage
        self.rate_limits = rate_limits or RateLimitConfig()
        self.modifiers = modifiers or XPModifiers()
        self.catalog = catalog if catalog is not None else AchievementCatalog.default()
        self.multipliers = multipliers or CatalogMultipliers()
        self.catalog_enabled = catalog_enabled
        self.progression = progression
        self._clock = clock
        self._locks = locks or KeyedLock()
        self._last_event: dict[str, datetime] = {}

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def process_xp_gain(
        self,
        player_uuid: str,
        event_type: str,
        event_source: str,
        base_xp: int,
        server_name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Accept or reject one XP event.

        Returns True if the event was recorded. Rejections (cooldown or a
        full window) return False and leave no trace. A storage failure
        while counting windows lets the event through; a failure while
        recording it propagates as ``StorageError``.
        """
        event_type = event_type.lower()
        key = rate_limit_key(player_uuid, event_type, event_source)

        async with self._locks.hold(key):
            now = self._clock()
            if self.rate_limits.enabled and not await self._within_limits(key, player_uuid, event_type, event_source, now):
                return False

            final_xp = self.compute_xp(event_type, event_source, base_xp)
            event = XPEvent(
                player_uuid=player_uuid,
                event_type=event_type,
                event_source=event_source,
                xp_gained=final_xp,
                timestamp=now,
                server_name=server_name,
                metadata=metadata,
            )
            await self.storage.record_xp_event(event)
            self._last_event[key] = now

        logger.info(
            "xp_event_accepted",
            player_uuid=player_uuid,
            event_type=event_type,
            event_source=event_source,
            base_xp=base_xp,
            final_xp=final_xp,
        )
        await self._forward(event)
        return True

    async def _within_limits(
        self,
        key: str,
        player_uuid: str,
        event_type: str,
        event_source: str,
        now: datetime,
    ) -> bool:
        last = self._last_event.get(key)
        if last is not None and (now - last).total_seconds() < self.rate_limits.cooldown_seconds:
            logger.debug("xp_event_rate_limited", key=key, reason="cooldown")
            return False

        windows = (
            ("minute", timedelta(minutes=1), self.rate_limits.max_per_minute),
            ("hour", timedelta(hours=1), self.rate_limits.max_per_hour),
            ("day", timedelta(days=1), self.rate_limits.max_per_day),
        )
        try:
            for name, span, limit in windows:
                count = await self.storage.get_xp_event_count(player_uuid, event_type, event_source, now - span, now)
                if count >= limit:
                    logger.debug("xp_event_rate_limited", key=key, reason=name, count=count, limit=limit)
                    return False
        except StorageError:
            logger.warning("xp_rate_check_failed_open", key=key, exc_info=True)
            return True
        return True

    async def _forward(self, event: XPEvent) -> None:
        """Credit an accepted event to the player's progression."""
        if self.progression is None:
            return
        source = f"{event.event_type}:{event.event_source}"
        try:
            await self.progression.add_xp(event.player_uuid, event.xp_gained, source)
            if event.event_type in ACHIEVEMENT_EVENT_TYPES:
                await self.progression.add_achievement(event.player_uuid, event.event_source)
        except StorageError:
            logger.error("xp_progression_update_failed", player_uuid=event.player_uuid, source=source, exc_info=True)

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def compute_xp(self, event_type: str, event_source: str, base_xp: int) -> int:
        """Final XP for an event.

        Catalog advancements are scaled by difficulty and variant bonuses
        (a non-positive ``base_xp`` falls back to the catalog's own value).
        Everything else uses the per-type modifier, rounded half up with a
        floor of 1.
        """
        event_type = event_type.lower()
        if self.catalog_enabled and event_type == CATALOG_EVENT_TYPE:
            entry = self.catalog.get(event_source)
            if entry is not None:
                base = base_xp if base_xp > 0 else entry.base_xp
                return entry.compute_xp(base, self.multipliers)

        modifier = self.modifiers.modifier_for(event_type)
        return max(1, _round_half_up(base_xp * modifier))

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def cleanup_rate_limit_data(self) -> int:
        """Drop cooldown stamps older than a day. Returns how many were removed."""
        cutoff = self._clock() - COOLDOWN_RETENTION
        stale = [key for key, stamp in self._last_event.items() if stamp < cutoff]
        for key in stale:
            del self._last_event[key]
        if stale:
            logger.debug("xp_cooldowns_pruned", count=len(stale))
        return len(stale)

    def get_rate_limit_info(self, player_uuid: str) -> dict[str, Any]:
        """Configured limits plus the player's keys active in the last hour."""
        cutoff = self._clock() - timedelta(hours=1)
        prefix = f"{player_uuid}:"
        active = sorted(
            key[len(prefix):]
            for key, stamp in self._last_event.items()
            if key.startswith(prefix) and stamp >= cutoff
        )
        return {
            "enabled": self.rate_limits.enabled,
            "cooldown_seconds": self.rate_limits.cooldown_seconds,
            "max_per_minute": self.rate_limits.max_per_minute,
            "max_per_hour": self.rate_limits.max_per_hour,
            "max_per_day": self.rate_limits.max_per_day,
            "active_keys": active,
        }
