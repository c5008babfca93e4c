"""Redis client used for proxy notifications.

Proxies subscribe to the ``pubsub:*`` channels below. Redis is optional:
with an empty ``redis_url`` nothing is published and readiness reports it
as disabled.
"""

import json
from typing import Any

import redis.asyncio as redis
import structlog

logger = structlog.get_logger()

PLAYER_VERIFIED_CHANNEL = "pubsub:player_verified"
RANK_UP_CHANNEL = "pubsub:rank_up"

_client: redis.Redis | None = None


async def init_redis(url: str) -> None:
    """Create the shared client, or leave Redis disabled for an empty url."""
    global _client  # noqa: PLW0603
    if not url:
        logger.info("redis_disabled")
        return
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


def get_redis_or_none() -> redis.Redis | None:
    return _client


async def publish_event(client: Any, channel: str, payload: dict[str, Any]) -> int:
    """Publish ``payload`` as JSON; returns the number of subscribers reached."""
    receivers = await client.publish(channel, json.dumps(payload))
    logger.debug("event_published", channel=channel, receivers=receivers)
    return receivers
