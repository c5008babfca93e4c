"""Storage backend contract consumed by the verification and progression core."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from gatekeeper.progression.models import PlayerRank, RankDefinition, XPEvent

VERIFIED = "VERIFIED"
UNVERIFIED = "UNVERIFIED"


class StorageBackend(ABC):
    """Persistence operations the core depends on.

    Implementations raise ``gatekeeper.exceptions.StorageError`` for
    infrastructure failures; a ``False`` return means the write was refused.
    """

    # --- Progression ---

    @abstractmethod
    async def get_player_rank(self, player_uuid: str) -> PlayerRank | None: ...

    @abstractmethod
    async def save_player_rank(self, rank: PlayerRank) -> bool: ...

    @abstractmethod
    async def get_all_rank_definitions(self) -> list[RankDefinition]: ...

    @abstractmethod
    async def log_rank_promotion(
        self,
        player_uuid: str,
        from_main: int,
        from_sub: int,
        to_main: int,
        to_sub: int,
        reason: str,
    ) -> None: ...

    # --- XP ---

    @abstractmethod
    async def record_xp_event(self, event: XPEvent) -> None: ...

    @abstractmethod
    async def get_xp_event_count(
        self,
        player_uuid: str,
        event_type: str,
        event_source: str,
        start: datetime,
        end: datetime,
    ) -> int: ...

    @abstractmethod
    async def log_xp_gain(self, player_uuid: str, amount: int, source: str) -> None: ...

    @abstractmethod
    async def log_achievement(self, player_uuid: str, achievement: str) -> None: ...

    @abstractmethod
    async def get_recent_xp_events(self, player_uuid: str, limit: int = 20) -> list[XPEvent]: ...

    @abstractmethod
    async def get_total_xp(self, player_uuid: str) -> int: ...

    # --- Whitelist / verification ---

    @abstractmethod
    async def is_whitelisted(self, username: str, player_uuid: str | None = None) -> bool: ...

    @abstractmethod
    async def add_to_whitelist(self, username: str, player_uuid: str) -> bool: ...

    @abstractmethod
    async def update_verification_state(self, player_uuid: str, state: str) -> bool: ...

    @abstractmethod
    async def link_external_identity(self, player_uuid: str, external_id: str, external_name: str | None) -> bool: ...

    @abstractmethod
    async def get_player_name(self, player_uuid: str) -> str | None: ...

    @abstractmethod
    async def get_external_id(self, player_uuid: str) -> str | None:
        """Chat-platform id linked to ``player_uuid``, if any."""
        ...
