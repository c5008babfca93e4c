"""Rank progression engine tests — loading, thresholds and promotion side effects."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from gatekeeper.exceptions import StorageError
from gatekeeper.progression.engine import RankProgressionEngine, meets_requirements
from gatekeeper.progression.models import PlayerRank, RankDefinition
from gatekeeper.progression.ranks import RankPosition

from tests.conftest import ALICE_UUID


def _engine(storage, definitions, clock, **kwargs) -> RankProgressionEngine:
    return RankProgressionEngine(storage, definitions, clock=clock, **kwargs)


class TestMeetsRequirements:
    """Both thresholds are required."""

    definition = RankDefinition(1, 2, "apprentice bystander", required_time_minutes=90, required_achievements=1)

    def test_both_met(self):
        rank = PlayerRank(ALICE_UUID, 1, 2, play_time_minutes=90, achievements_completed=1)
        assert meets_requirements(rank, self.definition)

    def test_only_time_met(self):
        rank = PlayerRank(ALICE_UUID, 1, 2, play_time_minutes=500, achievements_completed=0)
        assert not meets_requirements(rank, self.definition)

    def test_only_achievements_met(self):
        rank = PlayerRank(ALICE_UUID, 1, 2, play_time_minutes=89, achievements_completed=10)
        assert not meets_requirements(rank, self.definition)


class TestGetPlayerRank:
    """Loading, creation and self-healing."""

    @pytest.mark.asyncio
    async def test_missing_rank_created_at_start(self, storage, definitions, clock):
        engine = _engine(storage, definitions, clock)
        rank = await engine.get_player_rank(ALICE_UUID)
        assert rank.position == RankPosition(1, 1)
        assert rank.join_date == clock.now
        assert ALICE_UUID in storage.ranks

    @pytest.mark.asyncio
    async def test_sub_rank_nine_clamped_to_seven(self, storage, definitions, clock):
        storage.ranks[ALICE_UUID] = PlayerRank(ALICE_UUID, main_rank=4, sub_rank=9)
        engine = _engine(storage, definitions, clock)

        rank = await engine.get_player_rank(ALICE_UUID)
        assert rank.position == RankPosition(4, 7)
        assert storage.ranks[ALICE_UUID].sub_rank == 7

    @pytest.mark.asyncio
    async def test_main_rank_out_of_range_clamped(self, storage, definitions, clock):
        storage.ranks[ALICE_UUID] = PlayerRank(ALICE_UUID, main_rank=30, sub_rank=0)
        engine = _engine(storage, definitions, clock)
        rank = await engine.get_player_rank(ALICE_UUID)
        assert rank.position == RankPosition(25, 1)


class TestPromotion:
    """Threshold-driven promotion."""

    @pytest.mark.asyncio
    async def test_only_time_never_promotes(self, storage, definitions, clock):
        storage.ranks[ALICE_UUID] = PlayerRank(ALICE_UUID, 1, 2, play_time_minutes=10_000)
        engine = _engine(storage, definitions, clock)
        assert await engine.check_promotion(ALICE_UUID) is None
        assert storage.ranks[ALICE_UUID].position == RankPosition(1, 2)

    @pytest.mark.asyncio
    async def test_only_achievements_never_promotes(self, storage, definitions, clock):
        storage.ranks[ALICE_UUID] = PlayerRank(ALICE_UUID, 1, 2, achievements_completed=50)
        engine = _engine(storage, definitions, clock)
        assert await engine.check_promotion(ALICE_UUID) is None

    @pytest.mark.asyncio
    async def test_both_thresholds_promote_one_step(self, storage, definitions, clock):
        storage.ranks[ALICE_UUID] = PlayerRank(ALICE_UUID, 1, 2, play_time_minutes=90, achievements_completed=1)
        dispatcher = MagicMock()
        engine = _engine(storage, definitions, clock, dispatcher=dispatcher)

        assert await engine.check_promotion(ALICE_UUID) == RankPosition(1, 3)
        saved = storage.ranks[ALICE_UUID]
        assert saved.position == RankPosition(1, 3)
        assert saved.last_promotion == clock.now
        assert storage.promotions == [(ALICE_UUID, 1, 2, 1, 3, "Automatic progression")]
        dispatcher.schedule_promotion.assert_called_once()
        _rank, previous, definition = dispatcher.schedule_promotion.call_args.args
        assert previous == RankPosition(1, 2)
        assert definition.rank_name == "adept bystander"

    @pytest.mark.asyncio
    async def test_main_rank_rollover(self, storage, definitions, clock):
        storage.ranks[ALICE_UUID] = PlayerRank(ALICE_UUID, 1, 7, play_time_minutes=10_000, achievements_completed=6)
        engine = _engine(storage, definitions, clock)
        assert await engine.check_promotion(ALICE_UUID) == RankPosition(2, 1)

    @pytest.mark.asyncio
    async def test_terminal_rank_stays(self, storage, definitions, clock):
        storage.ranks[ALICE_UUID] = PlayerRank(
            ALICE_UUID, 25, 7, play_time_minutes=10**12, achievements_completed=10**6
        )
        engine = _engine(storage, definitions, clock)
        assert await engine.check_promotion(ALICE_UUID) is None
        assert storage.promotions == []

    @pytest.mark.asyncio
    async def test_missing_definition_blocks_promotion(self, storage, definitions, clock):
        definitions.replace([d for d in storage.definitions if (d.main_rank, d.sub_rank) != (1, 2)])
        storage.ranks[ALICE_UUID] = PlayerRank(ALICE_UUID, 1, 2, play_time_minutes=999, achievements_completed=9)
        engine = _engine(storage, definitions, clock)
        assert await engine.check_promotion(ALICE_UUID) is None

    @pytest.mark.asyncio
    async def test_disabled_engine_never_promotes(self, storage, definitions, clock):
        storage.ranks[ALICE_UUID] = PlayerRank(ALICE_UUID, 1, 2, play_time_minutes=999, achievements_completed=9)
        engine = _engine(storage, definitions, clock, enabled=False)
        assert await engine.check_promotion(ALICE_UUID) is None

    @pytest.mark.asyncio
    async def test_refused_save_leaves_rank_unchanged(self, storage, definitions, clock):
        storage.ranks[ALICE_UUID] = PlayerRank(ALICE_UUID, 1, 2, play_time_minutes=90, achievements_completed=1)
        dispatcher = MagicMock()
        engine = _engine(storage, definitions, clock, dispatcher=dispatcher)
        storage.save_player_rank = AsyncMock(return_value=False)

        assert await engine.check_promotion(ALICE_UUID) is None
        dispatcher.schedule_promotion.assert_not_called()
        assert storage.promotions == []

    @pytest.mark.asyncio
    async def test_promotion_log_failure_keeps_promotion(self, storage, definitions, clock):
        storage.ranks[ALICE_UUID] = PlayerRank(ALICE_UUID, 1, 2, play_time_minutes=90, achievements_completed=1)
        storage.log_rank_promotion = AsyncMock(side_effect=StorageError("disk full"))
        engine = _engine(storage, definitions, clock)
        assert await engine.check_promotion(ALICE_UUID) == RankPosition(1, 3)
        assert storage.ranks[ALICE_UUID].position == RankPosition(1, 3)

    @pytest.mark.asyncio
    async def test_forced_promotion_ignores_thresholds(self, storage, definitions, clock):
        engine = _engine(storage, definitions, clock)
        assert await engine.promote(ALICE_UUID, reason="Staff override") == RankPosition(1, 2)
        assert storage.promotions[-1][-1] == "Staff override"


class TestAccrual:
    """add_xp / add_achievement feed the promotion check."""

    @pytest.mark.asyncio
    async def test_add_xp_adds_to_pool_and_logs(self, storage, definitions, clock):
        engine = _engine(storage, definitions, clock)
        storage.ranks[ALICE_UUID] = PlayerRank(ALICE_UUID, 1, 2, achievements_completed=0)
        promoted = await engine.add_xp(ALICE_UUID, 40, "kill:zombie")
        assert promoted is False
        assert storage.ranks[ALICE_UUID].play_time_minutes == 40
        assert storage.xp_gains == [(ALICE_UUID, 40, "kill:zombie")]

    @pytest.mark.asyncio
    async def test_first_hour_promotes_from_start(self, storage, definitions, clock):
        """(1,1) needs 60 minutes and no achievements."""
        engine = _engine(storage, definitions, clock)
        assert await engine.add_xp(ALICE_UUID, 60, "playtime:session") is True
        assert storage.ranks[ALICE_UUID].position == RankPosition(1, 2)

    @pytest.mark.asyncio
    async def test_add_achievement_counts_and_promotes(self, storage, definitions, clock):
        storage.ranks[ALICE_UUID] = PlayerRank(ALICE_UUID, 1, 2, play_time_minutes=90)
        engine = _engine(storage, definitions, clock)
        assert await engine.add_achievement(ALICE_UUID, "minecraft:story/mine_stone") is True
        assert storage.achievements == [(ALICE_UUID, "minecraft:story/mine_stone")]
        assert storage.ranks[ALICE_UUID].achievements_completed == 1

    @pytest.mark.asyncio
    async def test_mark_verified(self, storage, definitions, clock):
        engine = _engine(storage, definitions, clock)
        rank = await engine.mark_verified(ALICE_UUID)
        assert rank.verified_at == clock.now
        assert storage.ranks[ALICE_UUID].verified_at == clock.now


class TestAnnouncement:
    """Promotions are broadcast on Redis, best-effort."""

    @pytest.mark.asyncio
    async def test_rank_up_published(self, storage, definitions, clock):
        redis = AsyncMock()
        engine = _engine(storage, definitions, clock, redis=redis)
        await engine.promote(ALICE_UUID)
        channel, payload = redis.publish.call_args.args
        assert channel == "pubsub:rank_up"
        assert json.loads(payload)["rank_name"] == "apprentice bystander"

    @pytest.mark.asyncio
    async def test_publish_failure_ignored(self, storage, definitions, clock):
        redis = AsyncMock()
        redis.publish.side_effect = ConnectionError("redis gone")
        engine = _engine(storage, definitions, clock, redis=redis)
        assert await engine.promote(ALICE_UUID) == RankPosition(1, 2)


class TestDisplay:
    @pytest.mark.asyncio
    async def test_progress_includes_next_thresholds(self, storage, definitions, clock):
        engine = _engine(storage, definitions, clock)
        rank = await engine.get_player_rank(ALICE_UUID)
        progress = engine.progress(rank)
        assert engine.format_rank(rank) == "novice bystander"
        assert progress["next_rank"] == "apprentice bystander"
        assert progress["required_time_minutes"] == 60
        assert progress["required_achievements"] == 0
