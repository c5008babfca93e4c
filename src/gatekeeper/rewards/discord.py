"""Chat-platform messenger backed by the Discord REST API."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from gatekeeper.rewards.providers import BaseMessenger

logger = structlog.get_logger()


class DiscordRestMessenger(BaseMessenger):
    """Send messages and manage guild roles via bot-token REST calls."""

    def __init__(
        self,
        bot_token: str,
        guild_id: str,
        base_url: str = "https://discord.com/api/v10",
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.guild_id = guild_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._headers = {
            "Authorization": f"Bot {bot_token}",
            "Content-Type": "application/json",
        }
        self._client = client

    async def _request(self, method: str, path: str, json: dict[str, Any] | None = None) -> httpx.Response:
        url = f"{self.base_url}{path}"
        if self._client is not None:
            response = await self._client.request(method, url, headers=self._headers, json=json, timeout=self.timeout)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.request(method, url, headers=self._headers, json=json, timeout=self.timeout)
        response.raise_for_status()
        return response

    async def send_channel_message(self, channel_id: str, content: str) -> bool:
        try:
            await self._request("POST", f"/channels/{channel_id}/messages", json={"content": content})
            return True
        except httpx.HTTPError:
            logger.warning("discord_channel_message_failed", channel_id=channel_id, exc_info=True)
            return False

    async def send_direct_message(self, user_id: str, content: str) -> bool:
        """Open (or reuse) the DM channel with ``user_id`` and post to it."""
        try:
            channel = await self._request("POST", "/users/@me/channels", json={"recipient_id": user_id})
            channel_id = channel.json()["id"]
            await self._request("POST", f"/channels/{channel_id}/messages", json={"content": content})
            return True
        except (httpx.HTTPError, KeyError, ValueError):
            logger.warning("discord_direct_message_failed", user_id=user_id, exc_info=True)
            return False

    async def add_role(self, user_id: str, role_id: str) -> bool:
        try:
            await self._request("PUT", f"/guilds/{self.guild_id}/members/{user_id}/roles/{role_id}")
            logger.info("discord_role_added", user_id=user_id, role_id=role_id)
            return True
        except httpx.HTTPError:
            logger.warning("discord_role_add_failed", user_id=user_id, role_id=role_id, exc_info=True)
            return False

    async def remove_role(self, user_id: str, role_id: str) -> bool:
        try:
            await self._request("DELETE", f"/guilds/{self.guild_id}/members/{user_id}/roles/{role_id}")
            logger.info("discord_role_removed", user_id=user_id, role_id=role_id)
            return True
        except httpx.HTTPError:
            logger.warning("discord_role_remove_failed", user_id=user_id, role_id=role_id, exc_info=True)
            return False

    async def get_member_roles(self, user_id: str) -> set[str]:
        try:
            response = await self._request("GET", f"/guilds/{self.guild_id}/members/{user_id}")
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                return set()
            raise
        return {str(role) for role in response.json().get("roles", [])}
