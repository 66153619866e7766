import json

import httpx
import pytest

from azure_boot.clients.discord import DiscordClient
from azure_boot.clients.http import RequestFailure, RetryPolicy
from azure_boot.control_message import (
    ChannelMessageRef,
    ControlMessage,
    InteractionRef,
    ref_from_json,
    ref_key,
    ref_to_json,
)
from azure_boot.errors import ChannelNotText, ControlMessageNotFound, InteractionExpired


class FakeDiscordApi:
    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], httpx.Response] = {}

    def route(self, method: str, path: str, status_code: int = 200, payload=None):
        self.routes[(method, path)] = httpx.Response(
            status_code=status_code, json=payload if payload is not None else {}
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/api/v10")
        response = self.routes.get((request.method, path))
        if response is None:
            return httpx.Response(status_code=404, json={"message": "Unknown"})
        return response


def _client(api: FakeDiscordApi) -> DiscordClient:
    return DiscordClient(
        "https://discord.test/api/v10",
        "app-1",
        "bot-token",
        RetryPolicy(attempts=1, sleep_sec=0),
        transport=httpx.MockTransport(api),
    )


def test_ref_json_keeps_the_variant():
    interaction = InteractionRef(interaction_id="i1", token="tok")
    channel = ChannelMessageRef(guild_id="g1", channel_id="c1", message_id="m1")
    assert ref_from_json(ref_to_json(interaction)) == interaction
    assert ref_from_json(ref_to_json(channel)) == channel
    assert ref_key(interaction) != ref_key(channel)


def test_interaction_edit_patches_original_reply():
    api = FakeDiscordApi()
    api.route("PATCH", "/webhooks/app-1/tok/messages/@original", payload={"id": "m"})
    control = ControlMessage(_client(api), InteractionRef(interaction_id="i1", token="tok"))

    control.edit(None, {"title": ":rocket: Start Minecraft Server"})

    request = api.requests[-1]
    assert request.headers["Authorization"] == "Bot bot-token"
    body = json.loads(request.content)
    assert body == {"embeds": [{"title": ":rocket: Start Minecraft Server"}]}


def test_expired_interaction_reply_is_reported():
    api = FakeDiscordApi()
    api.route("PATCH", "/webhooks/app-1/tok/messages/@original", status_code=401)
    control = ControlMessage(_client(api), InteractionRef(interaction_id="i1", token="tok"))

    with pytest.raises(InteractionExpired):
        control.edit("hello")


def test_channel_message_edit_resolves_guild_and_channel():
    api = FakeDiscordApi()
    api.route("GET", "/guilds/g1", payload={"id": "g1"})
    api.route("GET", "/channels/c1", payload={"id": "c1", "guild_id": "g1", "type": 0})
    api.route("PATCH", "/channels/c1/messages/m1", payload={"id": "m1"})
    ref = ChannelMessageRef(guild_id="g1", channel_id="c1", message_id="m1")

    ControlMessage(_client(api), ref).edit("Shutting down")

    assert [r.method for r in api.requests] == ["GET", "GET", "PATCH"]
    assert json.loads(api.requests[-1].content) == {"embeds": [], "content": "Shutting down"}


def test_channel_message_in_voice_channel_is_rejected():
    api = FakeDiscordApi()
    api.route("GET", "/guilds/g1", payload={"id": "g1"})
    api.route("GET", "/channels/c1", payload={"id": "c1", "guild_id": "g1", "type": 2})
    ref = ChannelMessageRef(guild_id="g1", channel_id="c1", message_id="m1")

    with pytest.raises(ChannelNotText):
        ControlMessage(_client(api), ref).edit("hello")


def test_channel_from_another_guild_is_not_found():
    api = FakeDiscordApi()
    api.route("GET", "/guilds/g1", payload={"id": "g1"})
    api.route("GET", "/channels/c1", payload={"id": "c1", "guild_id": "g2", "type": 0})
    ref = ChannelMessageRef(guild_id="g1", channel_id="c1", message_id="m1")

    with pytest.raises(ControlMessageNotFound):
        ControlMessage(_client(api), ref).edit("hello")


def test_deleted_channel_message_is_not_found():
    api = FakeDiscordApi()
    api.route("GET", "/guilds/g1", payload={"id": "g1"})
    api.route("GET", "/channels/c1", payload={"id": "c1", "guild_id": "g1", "type": 0})
    ref = ChannelMessageRef(guild_id="g1", channel_id="c1", message_id="gone")

    with pytest.raises(ControlMessageNotFound):
        ControlMessage(_client(api), ref).edit("hello")


def test_server_errors_propagate_as_request_failures():
    api = FakeDiscordApi()
    api.route("PATCH", "/webhooks/app-1/tok/messages/@original", status_code=503)
    control = ControlMessage(_client(api), InteractionRef(interaction_id="i1", token="tok"))

    with pytest.raises(RequestFailure):
        control.edit("hello")
