"""Reward dispatch for verification completion and rank promotions.

Each external effect (economy credit, permission group, chat roles,
announcements) runs on its own with a timeout. A failure is logged and
reported as ``False`` for that step only; it never reaches the caller and
never undoes the verification or promotion that triggered it.
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

import structlog

from gatekeeper.progression.models import PlayerRank, RankDefinition
from gatekeeper.progression.ranks import DEFAULT_RANK_NAMES, RankNames, RankPosition, main_rank_name, sub_rank_name
from gatekeeper.rewards.providers import (
    BaseCommandRunner,
    BaseEconomy,
    BaseMessenger,
    BasePermissions,
    NullCommandRunner,
    NullEconomy,
    NullMessenger,
    NullPermissions,
)
from gatekeeper.storage.base import StorageBackend

if TYPE_CHECKING:
    from gatekeeper.progression.engine import RankProgressionEngine

logger = structlog.get_logger()


def _frozen(mapping: Mapping[str, str] | None) -> Mapping[str, str]:
    return MappingProxyType({k.lower(): str(v) for k, v in (mapping or {}).items() if v})


@dataclass(frozen=True)
class RoleMap:
    """Chat-platform role ids for the verified state and each rank name."""

    verified_role_id: str | None = None
    main_rank_roles: Mapping[str, str] = field(default_factory=lambda: _frozen(None))
    sub_rank_roles: Mapping[str, str] = field(default_factory=lambda: _frozen(None))

    @classmethod
    def build(
        cls,
        verified_role_id: str | None,
        main_rank_roles: Mapping[str, str] | None = None,
        sub_rank_roles: Mapping[str, str] | None = None,
    ) -> RoleMap:
        return cls(
            verified_role_id=verified_role_id or None,
            main_rank_roles=_frozen(main_rank_roles),
            sub_rank_roles=_frozen(sub_rank_roles),
        )

    @property
    def managed(self) -> set[str]:
        """Every role this service owns; roles outside this set are never removed."""
        roles = set(self.main_rank_roles.values()) | set(self.sub_rank_roles.values())
        if self.verified_role_id:
            roles.add(self.verified_role_id)
        return roles

    def target_roles(self, rank: PlayerRank | None, verified: bool, names: RankNames = DEFAULT_RANK_NAMES) -> set[str]:
        target: set[str] = set()
        if verified and self.verified_role_id:
            target.add(self.verified_role_id)
        if rank is not None:
            main_role = self.main_rank_roles.get(main_rank_name(rank.main_rank, names))
            sub_role = self.sub_rank_roles.get(sub_rank_name(rank.sub_rank, names))
            target.update(role for role in (main_role, sub_role) if role)
        return target


@dataclass(frozen=True)
class RoleDelta:
    added: frozenset[str] = frozenset()
    removed: frozenset[str] = frozenset()
    failed: frozenset[str] = frozenset()


@dataclass(frozen=True)
class RewardConfig:
    enabled: bool = True
    default_group: str = "verified"
    timeout_seconds: float = 10.0
    announce_channel_id: str | None = None


class RewardDispatcher:
    """Fans verification and promotion events out to external collaborators."""

    def __init__(
        self,
        storage: StorageBackend,
        messenger: BaseMessenger | None = None,
        economy: BaseEconomy | None = None,
        permissions: BasePermissions | None = None,
        commands: BaseCommandRunner | None = None,
        roles: RoleMap | None = None,
        config: RewardConfig | None = None,
        names: RankNames = DEFAULT_RANK_NAMES,
        progression: RankProgressionEngine | None = None,
    ) -> None:
        self.storage = storage
        self.messenger = messenger or NullMessenger()
        self.economy = economy or NullEconomy()
        self.permissions = permissions or NullPermissions()
        self.commands = commands or NullCommandRunner()
        self.roles = roles or RoleMap()
        self.config = config or RewardConfig()
        self.names = names
        self.progression = progression
        self._tasks: set[asyncio.Task[dict[str, bool]]] = set()

    async def _isolated(self, step: str, operation: Awaitable[object], **context: object) -> bool:
        """Await one external effect, converting any failure into ``False``."""
        try:
            return bool(await asyncio.wait_for(operation, timeout=self.config.timeout_seconds))
        except asyncio.TimeoutError:
            logger.warning("reward_step_timed_out", step=step, **context)
        except Exception:
            logger.warning("reward_step_failed", step=step, exc_info=True, **context)
        return False

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def on_verification_completed(self, player_uuid: str, external_id: str | None = None) -> dict[str, bool]:
        """Apply every verification side effect. Never raises.

        Returns the outcome of each step, keyed by step name.
        """
        outcomes: dict[str, bool] = {}
        rank: PlayerRank | None = None

        if self.progression is not None:
            try:
                rank = await asyncio.wait_for(
                    self.progression.mark_verified(player_uuid), timeout=self.config.timeout_seconds
                )
                outcomes["mark_verified"] = True
            except Exception:
                logger.error("mark_verified_failed", player_uuid=player_uuid, exc_info=True)
                outcomes["mark_verified"] = False
        if rank is None:
            rank = await self._stored_rank(player_uuid)

        steps: dict[str, Awaitable[object]] = {
            "default_group": self.permissions.add_player_to_group(player_uuid, self.config.default_group),
        }
        if self.config.enabled:
            steps["whitelist_reward"] = self.economy.give_whitelist_reward(player_uuid)
        if rank is not None:
            steps["rank_group"] = self.permissions.sync_player_rank_group(
                player_uuid, main_rank_name(rank.main_rank, self.names)
            )
        if external_id:
            steps["roles"] = self._reconcile_step(external_id, rank, verified=True, prune=rank is not None)
            steps["welcome_message"] = self.messenger.send_direct_message(
                external_id, "Your Minecraft account has been verified. Welcome aboard!"
            )

        results = await asyncio.gather(
            *(self._isolated(name, op, player_uuid=player_uuid) for name, op in steps.items())
        )
        outcomes.update(zip(steps, results))
        logger.info("verification_rewards_processed", player_uuid=player_uuid, outcomes=outcomes)
        return outcomes

    # ------------------------------------------------------------------
    # Promotion
    # ------------------------------------------------------------------

    def schedule_promotion(
        self,
        rank: PlayerRank,
        previous: RankPosition,
        definition: RankDefinition | None = None,
    ) -> asyncio.Task[dict[str, bool]]:
        """Run promotion effects in the background; the caller does not wait."""
        snapshot = dataclasses.replace(rank)
        task = asyncio.create_task(self.on_promotion(snapshot, previous, definition))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def on_promotion(
        self,
        rank: PlayerRank,
        previous: RankPosition,
        definition: RankDefinition | None = None,
    ) -> dict[str, bool]:
        """Apply every promotion side effect. Never raises."""
        player_uuid = rank.player_uuid
        is_sub_rank = rank.main_rank == previous.main_rank
        rank_label = definition.rank_name if definition else f"{rank.main_rank}.{rank.sub_rank}"

        steps: dict[str, Awaitable[object]] = {
            "rank_group": self.permissions.sync_player_rank_group(
                player_uuid, main_rank_name(rank.main_rank, self.names)
            ),
            "roles": self._promotion_roles_step(rank),
        }
        if self.config.enabled:
            steps["rank_reward"] = self.economy.give_rank_reward(player_uuid, rank.main_rank, is_sub_rank)
            if definition is not None and not definition.rewards.is_empty:
                steps["definition_rewards"] = self._definition_rewards_step(player_uuid, definition)
        if self.config.announce_channel_id:
            steps["announcement"] = self._announce_step(player_uuid, rank_label)

        results = await asyncio.gather(
            *(self._isolated(name, op, player_uuid=player_uuid) for name, op in steps.items())
        )
        outcomes = dict(zip(steps, results))
        logger.info("promotion_rewards_processed", player_uuid=player_uuid, rank=rank_label, outcomes=outcomes)
        return outcomes

    async def _definition_rewards_step(self, player_uuid: str, definition: RankDefinition) -> bool:
        ok = True
        if definition.rewards.economy_amount > 0:
            ok = await self.economy.deposit(player_uuid, definition.rewards.economy_amount, definition.rank_name)
        if definition.rewards.commands:
            player_name = await self.storage.get_player_name(player_uuid) or player_uuid
            for template in definition.rewards.commands:
                command = template.replace("%player%", player_name).replace("%rank%", definition.rank_name)
                ok = await self.commands.run_command(command) and ok
        return ok

    async def _announce_step(self, player_uuid: str, rank_label: str) -> bool:
        player_name = await self.storage.get_player_name(player_uuid) or player_uuid
        return await self.messenger.send_channel_message(
            self.config.announce_channel_id or "",
            f"{player_name} has been promoted to {rank_label}!",
        )

    async def _promotion_roles_step(self, rank: PlayerRank) -> bool:
        external_id = await self.storage.get_external_id(rank.player_uuid)
        if not external_id:
            return True
        return await self._reconcile_step(external_id, rank, verified=rank.verified_at is not None)

    async def _stored_rank(self, player_uuid: str) -> PlayerRank | None:
        try:
            return await asyncio.wait_for(self.storage.get_player_rank(player_uuid), timeout=self.config.timeout_seconds)
        except Exception:
            logger.warning("stored_rank_unavailable", player_uuid=player_uuid, exc_info=True)
            return None

    async def _reconcile_step(
        self, external_id: str, rank: PlayerRank | None, verified: bool, prune: bool = True
    ) -> bool:
        delta = await self.reconcile_roles(external_id, rank, verified, prune=prune)
        return not delta.failed

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    async def reconcile_roles(
        self, external_id: str, rank: PlayerRank | None, verified: bool, prune: bool = True
    ) -> RoleDelta:
        """Bring the member's managed roles in line with their rank, touching only the delta.

        With ``prune`` off nothing is removed; used when the rank is unknown.
        """
        current = await self.messenger.get_member_roles(external_id)
        target = self.roles.target_roles(rank, verified, self.names)
        to_add = target - current
        to_remove = (current & self.roles.managed) - target if prune else set()

        added = {role for role in sorted(to_add) if await self.messenger.add_role(external_id, role)}
        removed = {role for role in sorted(to_remove) if await self.messenger.remove_role(external_id, role)}
        failed = (to_add - added) | (to_remove - removed)
        if to_add or to_remove:
            logger.info(
                "roles_reconciled",
                external_id=external_id,
                added=sorted(added),
                removed=sorted(removed),
                failed=sorted(failed),
            )
        return RoleDelta(added=frozenset(added), removed=frozenset(removed), failed=frozenset(failed))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def join(self) -> None:
        """Wait for all scheduled promotion work to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
