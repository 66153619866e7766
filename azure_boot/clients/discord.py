from typing import Any

import httpx

from azure_boot.clients.http import RetryPolicy, request_with_retry


# https://discord.com/developers/docs/interactions/receiving-and-responding
CALLBACK_PONG = 1
CALLBACK_CHANNEL_MESSAGE = 4
CALLBACK_DEFERRED_CHANNEL_MESSAGE = 5

FLAG_EPHEMERAL = 64

# Guild text, announcement and the three thread types.
TEXT_CHANNEL_TYPES = frozenset({0, 5, 10, 11, 12})


def _message_body(content: str | None, embeds: list[dict] | None) -> dict[str, Any]:
    body: dict[str, Any] = {"embeds": embeds or []}
    if content is not None:
        body["content"] = content
    return body


class DiscordClient:
    def __init__(
        self,
        base_url: str,
        application_id: str,
        bot_token: str,
        retry: RetryPolicy,
        transport: httpx.BaseTransport | None = None,
    ):
        self.application_id = application_id
        self.retry = retry
        self.client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=10.0,
            headers={"Authorization": f"Bot {bot_token}"},
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def get_current_user(self) -> dict:
        response = request_with_retry(self.client, "GET", "/users/@me", self.retry)
        return response.json()

    def edit_original_response(
        self, token: str, content: str | None, embeds: list[dict] | None = None
    ) -> dict:
        response = request_with_retry(
            self.client,
            "PATCH",
            f"/webhooks/{self.application_id}/{token}/messages/@original",
            self.retry,
            json=_message_body(content, embeds),
        )
        return response.json()

    def get_guild(self, guild_id: str) -> dict:
        response = request_with_retry(
            self.client, "GET", f"/guilds/{guild_id}", self.retry
        )
        return response.json()

    def get_channel(self, channel_id: str) -> dict:
        response = request_with_retry(
            self.client, "GET", f"/channels/{channel_id}", self.retry
        )
        return response.json()

    def create_message(
        self, channel_id: str, content: str | None, embeds: list[dict] | None = None
    ) -> dict:
        response = request_with_retry(
            self.client,
            "POST",
            f"/channels/{channel_id}/messages",
            self.retry,
            json=_message_body(content, embeds),
        )
        return response.json()

    def edit_message(
        self,
        channel_id: str,
        message_id: str,
        content: str | None,
        embeds: list[dict] | None = None,
    ) -> dict:
        response = request_with_retry(
            self.client,
            "PATCH",
            f"/channels/{channel_id}/messages/{message_id}",
            self.retry,
            json=_message_body(content, embeds),
        )
        return response.json()

    def overwrite_commands(
        self, commands: list[dict], guild_id: str | None = None
    ) -> list[dict]:
        if guild_id:
            path = f"/applications/{self.application_id}/guilds/{guild_id}/commands"
        else:
            path = f"/applications/{self.application_id}/commands"
        response = request_with_retry(
            self.client, "PUT", path, self.retry, json=commands
        )
        return response.json()
