"""Economy and permission providers that drive the proxy through console commands.

The proxy exposes a small authenticated HTTP bridge that executes a console
command and reports success. Economy credits go through ``eco give`` and
permission changes through LuckPerms ``lp user`` commands.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import httpx
import structlog

from gatekeeper.rewards.providers import BaseCommandRunner, BaseEconomy, BasePermissions

logger = structlog.get_logger()

NameResolver = Callable[[str], Awaitable[str | None]]


def rank_reward_amount(
    level: int,
    is_sub_rank: bool,
    base_reward: float = 500.0,
    subrank_multiplier: float = 0.5,
    mainrank_multiplier: float = 2.0,
) -> float:
    """Credit for reaching ``level``: ``base * multiplier * 1.5 ** (level - 1)``."""
    multiplier = subrank_multiplier if is_sub_rank else mainrank_multiplier
    return base_reward * multiplier * 1.5 ** (max(level, 1) - 1)


class CommandBridgeClient(BaseCommandRunner):
    """POSTs console commands to the proxy's command bridge."""

    def __init__(self, url: str, token: str = "", client: httpx.AsyncClient | None = None, timeout: float = 10.0) -> None:
        self.url = url
        self.token = token
        self.timeout = timeout
        self._client = client

    async def run_command(self, command: str) -> bool:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json={"command": command}, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(self.url, json={"command": command}, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError:
            logger.warning("command_bridge_failed", command=command, exc_info=True)
            return False
        logger.debug("command_bridge_executed", command=command)
        return True


class CommandBridgeEconomy(BaseEconomy):
    def __init__(
        self,
        runner: BaseCommandRunner,
        name_resolver: NameResolver | None = None,
        whitelist_reward: float = 100.0,
        base_reward: float = 500.0,
        subrank_multiplier: float = 0.5,
        mainrank_multiplier: float = 2.0,
    ) -> None:
        self.runner = runner
        self.name_resolver = name_resolver
        self.whitelist_reward = whitelist_reward
        self.base_reward = base_reward
        self.subrank_multiplier = subrank_multiplier
        self.mainrank_multiplier = mainrank_multiplier

    async def _target(self, player_uuid: str) -> str:
        if self.name_resolver is not None:
            name = await self.name_resolver(player_uuid)
            if name:
                return name
        return player_uuid

    async def deposit(self, player_uuid: str, amount: float, reason: str) -> bool:
        if amount <= 0:
            return False
        target = await self._target(player_uuid)
        ok = await self.runner.run_command(f"eco give {target} {amount:.2f}")
        if ok:
            logger.info("economy_deposit", player_uuid=player_uuid, amount=amount, reason=reason)
        return ok

    async def give_rank_reward(self, player_uuid: str, level: int, is_sub_rank: bool) -> bool:
        amount = rank_reward_amount(
            level,
            is_sub_rank,
            base_reward=self.base_reward,
            subrank_multiplier=self.subrank_multiplier,
            mainrank_multiplier=self.mainrank_multiplier,
        )
        return await self.deposit(player_uuid, amount, "sub_rank" if is_sub_rank else "main_rank")

    async def give_whitelist_reward(self, player_uuid: str) -> bool:
        return await self.deposit(player_uuid, self.whitelist_reward, "whitelist")


class CommandBridgePermissions(BasePermissions):
    """LuckPerms group changes issued as proxy console commands."""

    def __init__(self, runner: BaseCommandRunner) -> None:
        self.runner = runner

    async def add_player_to_group(self, player_uuid: str, group: str) -> bool:
        return await self.runner.run_command(f"lp user {player_uuid} parent add {group.lower()}")

    async def sync_player_rank_group(self, player_uuid: str, main_rank_name: str) -> bool:
        return await self.runner.run_command(f"lp user {player_uuid} parent set {main_rank_name.lower()}")
