"""Service wiring and shared FastAPI dependencies."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from fastapi import Request

from gatekeeper.config import Settings
from gatekeeper.progression.achievements import AchievementCatalog, CatalogMultipliers, XPModifiers
from gatekeeper.progression.definitions import RankDefinitionCache
from gatekeeper.progression.engine import RankProgressionEngine
from gatekeeper.progression.ranks import DEFAULT_RANK_NAMES, RankNames
from gatekeeper.progression.xp_ledger import RateLimitConfig, XPLedger
from gatekeeper.proxy.service import ProxyGate
from gatekeeper.redis_client import PLAYER_VERIFIED_CHANNEL, publish_event
from gatekeeper.rewards.command_bridge import CommandBridgeClient, CommandBridgeEconomy, CommandBridgePermissions
from gatekeeper.rewards.discord import DiscordRestMessenger
from gatekeeper.rewards.dispatcher import RewardConfig, RewardDispatcher, RoleMap
from gatekeeper.rewards.providers import BaseCommandRunner, BaseEconomy, BaseMessenger, BasePermissions
from gatekeeper.storage.base import StorageBackend
from gatekeeper.verification.sessions import RestrictionLiftCallback, SessionRegistry


@dataclass
class Services:
    """Everything the routers need, built once per application."""

    storage: StorageBackend
    definitions: RankDefinitionCache
    progression: RankProgressionEngine
    ledger: XPLedger
    dispatcher: RewardDispatcher
    sessions: SessionRegistry
    gate: ProxyGate
    http_client: httpx.AsyncClient | None = None


def _messenger(settings: Settings, http_client: httpx.AsyncClient | None) -> BaseMessenger | None:
    if settings.discord_bot_token and settings.discord_guild_id:
        return DiscordRestMessenger(
            bot_token=settings.discord_bot_token,
            guild_id=settings.discord_guild_id,
            base_url=settings.discord_api_base_url,
            client=http_client,
            timeout=settings.reward_timeout_seconds,
        )
    return None


def _command_providers(
    settings: Settings, storage: StorageBackend, http_client: httpx.AsyncClient | None
) -> tuple[BaseCommandRunner | None, BaseEconomy | None, BasePermissions | None]:
    if not settings.command_bridge_url:
        return None, None, None
    runner = CommandBridgeClient(
        settings.command_bridge_url,
        token=settings.command_bridge_token,
        client=http_client,
        timeout=settings.reward_timeout_seconds,
    )
    economy = CommandBridgeEconomy(
        runner,
        name_resolver=storage.get_player_name,
        whitelist_reward=settings.whitelist_reward,
        base_reward=settings.rank_base_reward,
        subrank_multiplier=settings.subrank_multiplier,
        mainrank_multiplier=settings.mainrank_multiplier,
    )
    return runner, economy, CommandBridgePermissions(runner)


def _release_publisher(redis: object) -> RestrictionLiftCallback:
    """Tell proxies listening on Redis that a player may leave purgatory."""

    async def publish(username: str, player_uuid: str) -> bool:
        await publish_event(redis, PLAYER_VERIFIED_CHANNEL, {"username": username, "player_uuid": player_uuid})
        return True

    return publish


def build_services(
    settings: Settings,
    storage: StorageBackend,
    redis: object | None = None,
    names: RankNames = DEFAULT_RANK_NAMES,
    messenger: BaseMessenger | None = None,
    economy: BaseEconomy | None = None,
    permissions: BasePermissions | None = None,
    commands: BaseCommandRunner | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Services:
    """Turn settings into immutable engine config and wire the core together.

    Collaborators not passed in are built from settings, falling back to
    no-op providers when unconfigured. REST providers share ``http_client``
    when one is given; its lifetime belongs to the caller.
    """
    default_runner, default_economy, default_permissions = _command_providers(settings, storage, http_client)

    definitions = RankDefinitionCache(names)
    progression = RankProgressionEngine(
        storage,
        definitions,
        names=names,
        redis=redis,
        enabled=settings.ranks_enabled,
    )
    dispatcher = RewardDispatcher(
        storage,
        messenger=messenger or _messenger(settings, http_client),
        economy=economy or default_economy,
        permissions=permissions or default_permissions,
        commands=commands or default_runner,
        roles=RoleMap.build(settings.verified_role_id, settings.main_rank_role_ids, settings.sub_rank_role_ids),
        config=RewardConfig(
            enabled=settings.rewards_enabled,
            default_group=settings.default_group,
            timeout_seconds=settings.reward_timeout_seconds,
            announce_channel_id=settings.announce_channel_id or None,
        ),
        names=names,
        progression=progression,
    )
    progression.dispatcher = dispatcher

    ledger = XPLedger(
        storage,
        rate_limits=RateLimitConfig(
            enabled=settings.xp_rate_limiting_enabled,
            cooldown_seconds=settings.xp_cooldown_seconds,
            max_per_minute=settings.xp_max_events_per_minute,
            max_per_hour=settings.xp_max_events_per_hour,
            max_per_day=settings.xp_max_events_per_day,
        ),
        modifiers=XPModifiers.from_mapping(settings.xp_modifiers),
        catalog=AchievementCatalog.default(),
        multipliers=CatalogMultipliers(
            easy=settings.xp_easy_multiplier,
            medium=settings.xp_medium_multiplier,
            hard=settings.xp_hard_multiplier,
            insane=settings.xp_insane_multiplier,
            terralith_bonus=settings.xp_terralith_bonus,
            hardcore_bonus=settings.xp_hardcore_bonus,
        ),
        catalog_enabled=settings.achievement_catalog_enabled,
        progression=progression,
    )

    sessions = SessionRegistry(
        storage,
        timeout_minutes=settings.session_timeout_minutes,
        max_attempts=settings.max_verification_attempts,
        allowed_server=settings.purgatory_server,
        completion_timeout=settings.verification_timeout_seconds,
        dispatcher=dispatcher,
    )
    if redis is not None:
        sessions.set_restriction_lift_callback(_release_publisher(redis))
    gate = ProxyGate(
        storage,
        sessions,
        use_purgatory=settings.use_purgatory,
        login_timeout=settings.login_check_timeout_seconds,
        bedrock_enabled=settings.bedrock_enabled,
        bedrock_prefix=settings.bedrock_prefix,
        denied_message=settings.not_whitelisted_message,
    )
    return Services(
        storage=storage,
        definitions=definitions,
        progression=progression,
        ledger=ledger,
        dispatcher=dispatcher,
        sessions=sessions,
        gate=gate,
        http_client=http_client,
    )


def get_services(request: Request) -> Services:
    """The application's service container."""
    return request.app.state.services


def get_sessions(request: Request) -> SessionRegistry:
    return get_services(request).sessions


def get_ledger(request: Request) -> XPLedger:
    return get_services(request).ledger


def get_progression(request: Request) -> RankProgressionEngine:
    return get_services(request).progression


def get_gate(request: Request) -> ProxyGate:
    return get_services(request).gate
