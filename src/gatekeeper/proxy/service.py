"""Login and server-switch decisions for the proxy's connection hooks."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import structlog

from gatekeeper.exceptions import GatekeeperError
from gatekeeper.storage.base import StorageBackend
from gatekeeper.verification.sessions import SessionRegistry

logger = structlog.get_logger()

PURGATORY_MESSAGE = "You must complete verification before connecting to other servers. Use /verify with your code."


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    message: str | None = None
    confined_to: str | None = None


class ProxyGate:
    """Answers the proxy's login and pre-connect questions."""

    def __init__(
        self,
        storage: StorageBackend,
        sessions: SessionRegistry,
        use_purgatory: bool = True,
        login_timeout: float = 10.0,
        bedrock_enabled: bool = False,
        bedrock_prefix: str = ".",
        denied_message: str = "You are not whitelisted on this server.",
    ) -> None:
        self.storage = storage
        self.sessions = sessions
        self.use_purgatory = use_purgatory
        self.login_timeout = login_timeout
        self.bedrock_enabled = bedrock_enabled
        self.bedrock_prefix = bedrock_prefix
        self.denied_message = denied_message

    def resolve_username(self, username: str) -> str:
        """Strip the Bedrock (Geyser) prefix when enabled."""
        if self.bedrock_enabled and self.bedrock_prefix and username.startswith(self.bedrock_prefix):
            return username[len(self.bedrock_prefix):]
        return username

    async def check_login(self, username: str, player_uuid: str | None = None) -> GateDecision:
        """Allow whitelisted players; confine players mid-verification; deny everyone else.

        A whitelist lookup that fails or exceeds the timeout denies.
        """
        name = self.resolve_username(username)
        try:
            whitelisted = await asyncio.wait_for(
                self.storage.is_whitelisted(name, player_uuid), timeout=self.login_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("login_check_timed_out", username=name, timeout=self.login_timeout)
            return GateDecision(allowed=False, message=self.denied_message)
        except GatekeeperError:
            logger.error("login_check_failed", username=name, exc_info=True)
            return GateDecision(allowed=False, message=self.denied_message)

        if whitelisted:
            logger.debug("login_allowed", username=name)
            return GateDecision(allowed=True)

        if self.use_purgatory:
            server = self.sessions.allowed_server_for(name)
            if server is not None:
                logger.info("login_confined", username=name, server=server)
                return GateDecision(allowed=True, confined_to=server)

        logger.info("login_denied", username=name)
        return GateDecision(allowed=False, message=self.denied_message)

    def check_server_switch(self, username: str, target_server: str) -> GateDecision:
        """Deny a switch away from the server an active session confines the player to."""
        name = self.resolve_username(username)
        allowed_server = self.sessions.allowed_server_for(name)
        if allowed_server is None or target_server.lower() == allowed_server.lower():
            return GateDecision(allowed=True, confined_to=allowed_server)
        logger.info("server_switch_blocked", username=name, target=target_server, allowed=allowed_server)
        return GateDecision(allowed=False, message=PURGATORY_MESSAGE, confined_to=allowed_server)
