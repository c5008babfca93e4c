"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from gatekeeper.config import Settings
from gatekeeper.progression.definitions import RankDefinitionCache
from gatekeeper.progression.models import PlayerRank, RankDefinition, XPEvent
from gatekeeper.rewards.providers import BaseEconomy, BaseMessenger, BasePermissions
from gatekeeper.storage.base import StorageBackend
from gatekeeper.storage.seed import default_rank_definitions

ALICE_UUID = "8667ba71-b85a-4004-af54-457a9734eed7"
BOB_UUID = "069a79f4-44e9-4726-a5be-fca90e38aaf5"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, minutes: float = 0) -> None:
        self.now += timedelta(seconds=seconds, minutes=minutes)


class FakeStorage(StorageBackend):
    """In-memory storage backend. Set ``fail_*`` attributes to simulate faults."""

    def __init__(self) -> None:
        self.ranks: dict[str, PlayerRank] = {}
        self.definitions: list[RankDefinition] = default_rank_definitions()
        self.xp_events: list[XPEvent] = []
        self.xp_gains: list[tuple[str, int, str]] = []
        self.achievements: list[tuple[str, str]] = []
        self.promotions: list[tuple[str, int, int, int, int, str]] = []
        self.whitelist: dict[str, str] = {}
        self.verification_states: dict[str, str] = {}
        self.linked: dict[str, tuple[str, str | None]] = {}
        self.verification_result = True
        self.count_error: Exception | None = None
        self.verification_error: Exception | None = None

    async def get_player_rank(self, player_uuid: str) -> PlayerRank | None:
        rank = self.ranks.get(player_uuid)
        if rank is None:
            return None
        # hand out copies like a real database would
        return PlayerRank(**vars(rank))

    async def save_player_rank(self, rank: PlayerRank) -> bool:
        self.ranks[rank.player_uuid] = PlayerRank(**vars(rank))
        return True

    async def get_all_rank_definitions(self) -> list[RankDefinition]:
        return list(self.definitions)

    async def log_rank_promotion(self, player_uuid, from_main, from_sub, to_main, to_sub, reason) -> None:
        self.promotions.append((player_uuid, from_main, from_sub, to_main, to_sub, reason))

    async def record_xp_event(self, event: XPEvent) -> None:
        self.xp_events.append(event)

    async def get_xp_event_count(self, player_uuid, event_type, event_source, start, end) -> int:
        if self.count_error is not None:
            raise self.count_error
        return sum(
            1
            for e in self.xp_events
            if e.player_uuid == player_uuid
            and e.event_type == event_type
            and e.event_source == event_source
            and start <= e.timestamp <= end
        )

    async def log_xp_gain(self, player_uuid: str, amount: int, source: str) -> None:
        self.xp_gains.append((player_uuid, amount, source))

    async def log_achievement(self, player_uuid: str, achievement: str) -> None:
        self.achievements.append((player_uuid, achievement))

    async def get_recent_xp_events(self, player_uuid: str, limit: int = 20) -> list[XPEvent]:
        events = [e for e in self.xp_events if e.player_uuid == player_uuid]
        return sorted(events, key=lambda e: e.timestamp, reverse=True)[:limit]

    async def get_total_xp(self, player_uuid: str) -> int:
        return sum(e.xp_gained for e in self.xp_events if e.player_uuid == player_uuid)

    async def is_whitelisted(self, username: str, player_uuid: str | None = None) -> bool:
        if username.lower() in self.whitelist:
            return True
        return player_uuid is not None and player_uuid in self.whitelist.values()

    async def add_to_whitelist(self, username: str, player_uuid: str) -> bool:
        self.whitelist[username.lower()] = player_uuid
        return True

    async def update_verification_state(self, player_uuid: str, state: str) -> bool:
        if self.verification_error is not None:
            raise self.verification_error
        if not self.verification_result:
            return False
        self.verification_states[player_uuid] = state
        return True

    async def link_external_identity(self, player_uuid: str, external_id: str, external_name: str | None) -> bool:
        self.linked[player_uuid] = (external_id, external_name)
        return True

    async def get_player_name(self, player_uuid: str) -> str | None:
        for name, uuid in self.whitelist.items():
            if uuid == player_uuid:
                return name
        return None

    async def get_external_id(self, player_uuid: str) -> str | None:
        linked = self.linked.get(player_uuid)
        return linked[0] if linked else None


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def definitions(storage: FakeStorage) -> RankDefinitionCache:
    cache = RankDefinitionCache()
    cache.replace(storage.definitions)
    return cache


@pytest.fixture
def messenger() -> AsyncMock:
    mock = AsyncMock(spec=BaseMessenger)
    mock.get_member_roles.return_value = set()
    mock.add_role.return_value = True
    mock.remove_role.return_value = True
    mock.send_direct_message.return_value = True
    mock.send_channel_message.return_value = True
    return mock


@pytest.fixture
def economy() -> AsyncMock:
    mock = AsyncMock(spec=BaseEconomy)
    mock.give_rank_reward.return_value = True
    mock.give_whitelist_reward.return_value = True
    mock.deposit.return_value = True
    return mock


@pytest.fixture
def permissions() -> AsyncMock:
    mock = AsyncMock(spec=BasePermissions)
    mock.add_player_to_group.return_value = True
    mock.sync_player_rank_group.return_value = True
    return mock


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        log_format="console",
        verified_role_id="900",
        main_rank_role_ids={"bystander": "901", "onlooker": "902"},
        sub_rank_role_ids={"novice": "911", "apprentice": "912"},
    )


@pytest_asyncio.fixture
async def client(
    test_settings: Settings,
    storage: FakeStorage,
    messenger: AsyncMock,
    economy: AsyncMock,
    permissions: AsyncMock,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against an app wired to in-memory storage and mock collaborators."""
    from gatekeeper.dependencies import build_services
    from gatekeeper.main import create_app

    app = create_app()
    services = build_services(
        test_settings,
        storage,
        messenger=messenger,
        economy=economy,
        permissions=permissions,
    )
    services.definitions.replace(storage.definitions)
    app.state.services = services

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await services.dispatcher.join()
