"""Reward dispatcher tests — isolation, role reconciliation and promotion effects."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from gatekeeper.exceptions import StorageError
from gatekeeper.progression.engine import RankProgressionEngine
from gatekeeper.progression.models import PlayerRank, RankDefinition, RankRewards
from gatekeeper.progression.ranks import RankPosition
from gatekeeper.rewards.dispatcher import RewardConfig, RewardDispatcher, RoleMap
from gatekeeper.rewards.providers import BaseCommandRunner

from tests.conftest import ALICE_UUID

VERIFIED_AT = datetime(2026, 1, 1, tzinfo=timezone.utc)

ROLES = RoleMap.build(
    "900",
    main_rank_roles={"Bystander": "901", "onlooker": "902"},
    sub_rank_roles={"novice": "911", "apprentice": "912", "adept": "913"},
)


@pytest.fixture
def commands() -> AsyncMock:
    mock = AsyncMock(spec=BaseCommandRunner)
    mock.run_command.return_value = True
    return mock


@pytest.fixture
def dispatcher(storage, messenger, economy, permissions, commands) -> RewardDispatcher:
    return RewardDispatcher(
        storage,
        messenger=messenger,
        economy=economy,
        permissions=permissions,
        commands=commands,
        roles=ROLES,
        config=RewardConfig(timeout_seconds=0.2, announce_channel_id="777"),
    )


class TestRoleMap:
    def test_managed_roles(self):
        assert ROLES.managed == {"900", "901", "902", "911", "912", "913"}

    def test_target_roles_for_verified_rank(self):
        rank = PlayerRank(ALICE_UUID, 1, 2)
        assert ROLES.target_roles(rank, verified=True) == {"900", "901", "912"}

    def test_unmapped_rank_names_contribute_nothing(self):
        rank = PlayerRank(ALICE_UUID, 5, 7)
        assert ROLES.target_roles(rank, verified=False) == set()

    def test_blank_role_ids_ignored(self):
        roles = RoleMap.build("", main_rank_roles={"bystander": ""})
        assert roles.managed == set()


class TestReconcileRoles:
    """Only the delta is touched; unmanaged roles are left alone."""

    @pytest.mark.asyncio
    async def test_adds_and_removes_delta(self, dispatcher, messenger):
        messenger.get_member_roles.return_value = {"901", "911", "555"}
        rank = PlayerRank(ALICE_UUID, 1, 2)

        delta = await dispatcher.reconcile_roles("4242", rank, verified=True)

        assert delta.added == {"900", "912"}
        assert delta.removed == {"911"}
        added = {c.args[1] for c in messenger.add_role.await_args_list}
        removed = {c.args[1] for c in messenger.remove_role.await_args_list}
        assert added == {"900", "912"}
        assert removed == {"911"}

    @pytest.mark.asyncio
    async def test_already_in_sync_makes_no_calls(self, dispatcher, messenger):
        messenger.get_member_roles.return_value = {"900", "901", "912", "555"}
        delta = await dispatcher.reconcile_roles("4242", PlayerRank(ALICE_UUID, 1, 2), verified=True)
        assert not delta.added and not delta.removed
        messenger.add_role.assert_not_awaited()
        messenger.remove_role.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refused_change_not_reported(self, dispatcher, messenger):
        messenger.add_role.return_value = False
        delta = await dispatcher.reconcile_roles("4242", PlayerRank(ALICE_UUID, 1, 1), verified=False)
        assert delta.added == frozenset()
        assert delta.failed == {"901", "911"}

    @pytest.mark.asyncio
    async def test_refused_change_fails_roles_outcome(self, dispatcher, messenger):
        messenger.add_role.return_value = False
        outcomes = await dispatcher.on_verification_completed(ALICE_UUID, "4242")
        assert outcomes["roles"] is False
        assert outcomes["welcome_message"] is True


class TestVerificationRewards:
    @pytest.mark.asyncio
    async def test_all_steps_reported(self, storage, definitions, clock, messenger, economy, permissions):
        progression = RankProgressionEngine(storage, definitions, clock=clock)
        dispatcher = RewardDispatcher(
            storage,
            messenger=messenger,
            economy=economy,
            permissions=permissions,
            roles=ROLES,
            progression=progression,
        )

        outcomes = await dispatcher.on_verification_completed(ALICE_UUID, "4242")

        assert outcomes == {
            "mark_verified": True,
            "default_group": True,
            "whitelist_reward": True,
            "rank_group": True,
            "roles": True,
            "welcome_message": True,
        }
        permissions.add_player_to_group.assert_awaited_once_with(ALICE_UUID, "verified")
        permissions.sync_player_rank_group.assert_awaited_once_with(ALICE_UUID, "bystander")
        assert {c.args[1] for c in messenger.add_role.await_args_list} == {"900", "901", "911"}

    @pytest.mark.asyncio
    async def test_without_external_identity(self, dispatcher, messenger):
        outcomes = await dispatcher.on_verification_completed(ALICE_UUID)
        assert "roles" not in outcomes
        assert "welcome_message" not in outcomes
        messenger.send_direct_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failing_step_is_isolated(self, dispatcher, economy, permissions):
        economy.give_whitelist_reward.side_effect = RuntimeError("economy plugin offline")
        outcomes = await dispatcher.on_verification_completed(ALICE_UUID, "4242")
        assert outcomes["whitelist_reward"] is False
        assert outcomes["default_group"] is True
        assert outcomes["welcome_message"] is True

    @pytest.mark.asyncio
    async def test_stalled_step_times_out(self, dispatcher, economy):
        async def stall(*_args):
            await asyncio.sleep(5)
            return True

        economy.give_whitelist_reward.side_effect = stall
        outcomes = await dispatcher.on_verification_completed(ALICE_UUID)
        assert outcomes["whitelist_reward"] is False
        assert outcomes["default_group"] is True

    @pytest.mark.asyncio
    async def test_rewards_disabled(self, storage, economy):
        dispatcher = RewardDispatcher(storage, economy=economy, config=RewardConfig(enabled=False))
        outcomes = await dispatcher.on_verification_completed(ALICE_UUID)
        assert "whitelist_reward" not in outcomes
        economy.give_whitelist_reward.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_mark_verified_keeps_rank_roles(self, storage, messenger, permissions):
        progression = AsyncMock()
        progression.mark_verified.side_effect = StorageError("connection reset")
        messenger.get_member_roles.return_value = {"902", "913"}
        dispatcher = RewardDispatcher(
            storage, messenger=messenger, permissions=permissions, roles=ROLES, progression=progression
        )

        outcomes = await dispatcher.on_verification_completed(ALICE_UUID, "4242")

        assert outcomes["mark_verified"] is False
        assert outcomes["roles"] is True
        messenger.remove_role.assert_not_awaited()
        assert {c.args[1] for c in messenger.add_role.await_args_list} == {"900"}

    @pytest.mark.asyncio
    async def test_failed_mark_verified_uses_stored_rank(self, storage, messenger, permissions):
        storage.ranks[ALICE_UUID] = PlayerRank(ALICE_UUID, 1, 2)
        progression = AsyncMock()
        progression.mark_verified.side_effect = StorageError("connection reset")
        messenger.get_member_roles.return_value = {"901", "911"}
        dispatcher = RewardDispatcher(
            storage, messenger=messenger, permissions=permissions, roles=ROLES, progression=progression
        )

        outcomes = await dispatcher.on_verification_completed(ALICE_UUID, "4242")

        assert outcomes["rank_group"] is True
        assert {c.args[1] for c in messenger.add_role.await_args_list} == {"900", "912"}
        assert {c.args[1] for c in messenger.remove_role.await_args_list} == {"911"}


class TestPromotionRewards:
    @pytest.mark.asyncio
    async def test_sub_rank_promotion(self, dispatcher, economy, permissions, messenger, storage):
        storage.whitelist["alice"] = ALICE_UUID
        rank = PlayerRank(ALICE_UUID, 1, 3)
        definition = RankDefinition(1, 3, "adept bystander")

        outcomes = await dispatcher.on_promotion(rank, RankPosition(1, 2), definition)

        economy.give_rank_reward.assert_awaited_once_with(ALICE_UUID, 1, True)
        permissions.sync_player_rank_group.assert_awaited_once_with(ALICE_UUID, "bystander")
        messenger.send_channel_message.assert_awaited_once_with("777", "alice has been promoted to adept bystander!")
        assert outcomes["roles"] is True
        assert "definition_rewards" not in outcomes

    @pytest.mark.asyncio
    async def test_main_rank_promotion(self, dispatcher, economy, permissions):
        rank = PlayerRank(ALICE_UUID, 2, 1)
        await dispatcher.on_promotion(rank, RankPosition(1, 7))
        economy.give_rank_reward.assert_awaited_once_with(ALICE_UUID, 2, False)
        permissions.sync_player_rank_group.assert_awaited_once_with(ALICE_UUID, "onlooker")

    @pytest.mark.asyncio
    async def test_definition_rewards(self, dispatcher, economy, commands, storage):
        storage.whitelist["alice"] = ALICE_UUID
        definition = RankDefinition(
            1,
            3,
            "adept bystander",
            rewards=RankRewards(
                economy_amount=250,
                commands=("give %player% diamond 1", "broadcast %player% reached %rank%"),
            ),
        )

        outcomes = await dispatcher.on_promotion(PlayerRank(ALICE_UUID, 1, 3), RankPosition(1, 2), definition)

        assert outcomes["definition_rewards"] is True
        economy.deposit.assert_awaited_once_with(ALICE_UUID, 250, "adept bystander")
        assert [c.args[0] for c in commands.run_command.await_args_list] == [
            "give alice diamond 1",
            "broadcast alice reached adept bystander",
        ]

    @pytest.mark.asyncio
    async def test_roles_follow_linked_identity(self, dispatcher, messenger, storage):
        storage.linked[ALICE_UUID] = ("4242", "alice")
        messenger.get_member_roles.return_value = {"900", "901", "912"}
        rank = PlayerRank(ALICE_UUID, 1, 3, verified_at=VERIFIED_AT)

        await dispatcher.on_promotion(rank, RankPosition(1, 2))

        messenger.add_role.assert_awaited_once_with("4242", "913")
        messenger.remove_role.assert_awaited_once_with("4242", "912")

    @pytest.mark.asyncio
    async def test_every_step_failing_never_raises(self, dispatcher, economy, permissions, messenger):
        economy.give_rank_reward.side_effect = RuntimeError("boom")
        permissions.sync_player_rank_group.side_effect = RuntimeError("boom")
        messenger.send_channel_message.side_effect = RuntimeError("boom")
        outcomes = await dispatcher.on_promotion(PlayerRank(ALICE_UUID, 1, 3), RankPosition(1, 2))
        assert outcomes["rank_reward"] is False
        assert outcomes["rank_group"] is False
        assert outcomes["announcement"] is False

    @pytest.mark.asyncio
    async def test_schedule_uses_snapshot(self, dispatcher, permissions):
        rank = PlayerRank(ALICE_UUID, 1, 3)
        dispatcher.schedule_promotion(rank, RankPosition(1, 2))
        assert dispatcher.pending == 1

        rank.main_rank = 9
        await dispatcher.join()

        assert dispatcher.pending == 0
        permissions.sync_player_rank_group.assert_awaited_once_with(ALICE_UUID, "bystander")
