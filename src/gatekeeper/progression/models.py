"""Domain records exchanged with the storage backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from gatekeeper.progression.ranks import DEFAULT_RANK_NAMES, RankNames, RankPosition, clamp_position


@dataclass
class PlayerRank:
    """A player's lattice position and progression counters."""

    player_uuid: str
    main_rank: int = 1
    sub_rank: int = 1
    join_date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    play_time_minutes: int = 0
    achievements_completed: int = 0
    last_promotion: datetime | None = None
    verified_at: datetime | None = None

    @property
    def position(self) -> RankPosition:
        return RankPosition(self.main_rank, self.sub_rank)

    def clamp(self, names: RankNames = DEFAULT_RANK_NAMES) -> bool:
        """Repair an out-of-range position in place.

        Returns True if anything was changed.
        """
        fixed = clamp_position(self.main_rank, self.sub_rank, names)
        changed = fixed != self.position
        self.main_rank = fixed.main_rank
        self.sub_rank = fixed.sub_rank
        return changed

    @classmethod
    def starting(cls, player_uuid: str, now: datetime | None = None) -> PlayerRank:
        """The rank a brand new player starts at."""
        return cls(player_uuid=player_uuid, join_date=now or datetime.now(timezone.utc))


@dataclass(frozen=True)
class RankRewards:
    economy_amount: int = 0
    commands: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return self.economy_amount <= 0 and not self.commands


@dataclass(frozen=True)
class RankDefinition:
    """Thresholds a player at this position must reach to be promoted past it."""

    main_rank: int
    sub_rank: int
    rank_name: str
    required_time_minutes: int = 0
    required_achievements: int = 0
    discord_role_id: str | None = None
    rewards: RankRewards = field(default_factory=RankRewards)

    @property
    def cache_key(self) -> int:
        return definition_key(self.main_rank, self.sub_rank)

    @property
    def position(self) -> RankPosition:
        return RankPosition(self.main_rank, self.sub_rank)


def definition_key(main_rank: int, sub_rank: int) -> int:
    """Composite cache key ``main * 100 + sub``."""
    return main_rank * 100 + sub_rank


@dataclass(frozen=True)
class XPEvent:
    """An accepted XP gain. Doubles as the rate-limit window record."""

    player_uuid: str
    event_type: str
    event_source: str
    xp_gained: int
    timestamp: datetime
    server_name: str | None = None
    metadata: dict[str, Any] | None = None
