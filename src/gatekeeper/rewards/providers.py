"""External collaborator interfaces used by the reward dispatcher.

Every method is best-effort: implementations return ``False`` (or an empty
result) when the remote side refuses, and may raise on transport errors.
The dispatcher isolates both.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import structlog

logger = structlog.get_logger()


class BaseMessenger(ABC):
    """Chat-platform messaging and role management."""

    @abstractmethod
    async def send_channel_message(self, channel_id: str, content: str) -> bool: ...

    @abstractmethod
    async def send_direct_message(self, user_id: str, content: str) -> bool: ...

    @abstractmethod
    async def add_role(self, user_id: str, role_id: str) -> bool: ...

    @abstractmethod
    async def remove_role(self, user_id: str, role_id: str) -> bool: ...

    @abstractmethod
    async def get_member_roles(self, user_id: str) -> set[str]:
        """Current role ids held by a guild member (empty if not a member)."""
        ...


class BaseEconomy(ABC):
    """In-game economy credits."""

    @abstractmethod
    async def give_rank_reward(self, player_uuid: str, level: int, is_sub_rank: bool) -> bool: ...

    @abstractmethod
    async def give_whitelist_reward(self, player_uuid: str) -> bool: ...

    @abstractmethod
    async def deposit(self, player_uuid: str, amount: float, reason: str) -> bool: ...


class BasePermissions(ABC):
    """Permission-group management on the proxy."""

    @abstractmethod
    async def add_player_to_group(self, player_uuid: str, group: str) -> bool: ...

    @abstractmethod
    async def sync_player_rank_group(self, player_uuid: str, main_rank_name: str) -> bool:
        """Make ``main_rank_name`` the player's primary group."""
        ...


class BaseCommandRunner(ABC):
    """Runs console commands on the proxy."""

    @abstractmethod
    async def run_command(self, command: str) -> bool: ...


class NullMessenger(BaseMessenger):
    """Used when no chat platform is configured."""

    async def send_channel_message(self, channel_id: str, content: str) -> bool:
        logger.debug("messenger_disabled", action="send_channel_message", channel_id=channel_id)
        return False

    async def send_direct_message(self, user_id: str, content: str) -> bool:
        logger.debug("messenger_disabled", action="send_direct_message", user_id=user_id)
        return False

    async def add_role(self, user_id: str, role_id: str) -> bool:
        return False

    async def remove_role(self, user_id: str, role_id: str) -> bool:
        return False

    async def get_member_roles(self, user_id: str) -> set[str]:
        return set()


class NullEconomy(BaseEconomy):
    async def give_rank_reward(self, player_uuid: str, level: int, is_sub_rank: bool) -> bool:
        return False

    async def give_whitelist_reward(self, player_uuid: str) -> bool:
        return False

    async def deposit(self, player_uuid: str, amount: float, reason: str) -> bool:
        return False


class NullPermissions(BasePermissions):
    async def add_player_to_group(self, player_uuid: str, group: str) -> bool:
        return False

    async def sync_player_rank_group(self, player_uuid: str, main_rank_name: str) -> bool:
        return False


class NullCommandRunner(BaseCommandRunner):
    async def run_command(self, command: str) -> bool:
        logger.debug("command_runner_disabled", command=command)
        return False
