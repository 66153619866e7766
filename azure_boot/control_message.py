"""The chat message a request edits to show the user its progress.

A control message is either the reply to the slash command interaction that
started the request, or a standing message in a guild channel. Interaction
replies stop being editable once the interaction token expires (about fifteen
minutes); channel messages stay editable until somebody deletes them.
"""

import json
from dataclasses import dataclass

from azure_boot.clients.discord import TEXT_CHANNEL_TYPES, DiscordClient
from azure_boot.clients.http import RequestFailure
from azure_boot.errors import ChannelNotText, ControlMessageNotFound, InteractionExpired


INTERACTION = "interaction"
CHANNEL_MESSAGE = "channel_message"

# Expired interaction tokens come back as 401 "Invalid Webhook Token".
_EXPIRED_STATUSES = {401, 404}
_MISSING_STATUSES = {403, 404}


@dataclass(frozen=True)
class InteractionRef:
    interaction_id: str
    token: str


@dataclass(frozen=True)
class ChannelMessageRef:
    guild_id: str
    channel_id: str
    message_id: str


ControlMessageRef = InteractionRef | ChannelMessageRef


def ref_key(ref: ControlMessageRef) -> str:
    if isinstance(ref, InteractionRef):
        return f"{INTERACTION}:{ref.interaction_id}"
    return f"{CHANNEL_MESSAGE}:{ref.guild_id}/{ref.channel_id}/{ref.message_id}"


def ref_to_json(ref: ControlMessageRef) -> str:
    if isinstance(ref, InteractionRef):
        payload = {"type": INTERACTION, "id": ref.interaction_id, "token": ref.token}
    else:
        payload = {
            "type": CHANNEL_MESSAGE,
            "guild_id": ref.guild_id,
            "channel_id": ref.channel_id,
            "message_id": ref.message_id,
        }
    return json.dumps(payload, sort_keys=True)


def ref_from_json(raw: str) -> ControlMessageRef:
    payload = json.loads(raw)
    kind = payload.get("type")
    if kind == INTERACTION:
        return InteractionRef(interaction_id=payload["id"], token=payload["token"])
    if kind == CHANNEL_MESSAGE:
        return ChannelMessageRef(
            guild_id=payload["guild_id"],
            channel_id=payload["channel_id"],
            message_id=payload["message_id"],
        )
    raise ValueError(f"unknown control message type {kind!r}")


class ControlMessage:
    def __init__(self, discord: DiscordClient, ref: ControlMessageRef):
        self.discord = discord
        self.ref = ref

    def edit(self, content: str | None, embed: dict | None = None) -> None:
        embeds = [embed] if embed else []
        if isinstance(self.ref, InteractionRef):
            self._edit_interaction(self.ref, content, embeds)
        else:
            self._edit_channel_message(self.ref, content, embeds)

    def _edit_interaction(
        self, ref: InteractionRef, content: str | None, embeds: list[dict]
    ) -> None:
        try:
            self.discord.edit_original_response(ref.token, content, embeds)
        except RequestFailure as exc:
            if exc.status_code in _EXPIRED_STATUSES:
                raise InteractionExpired(
                    f"interaction {ref.interaction_id} reply can no longer be edited"
                ) from exc
            raise

    def _edit_channel_message(
        self, ref: ChannelMessageRef, content: str | None, embeds: list[dict]
    ) -> None:
        try:
            self.discord.get_guild(ref.guild_id)
        except RequestFailure as exc:
            if exc.status_code in _MISSING_STATUSES:
                raise ControlMessageNotFound(
                    f"guild {ref.guild_id} could not be found"
                ) from exc
            raise

        try:
            channel = self.discord.get_channel(ref.channel_id)
        except RequestFailure as exc:
            if exc.status_code in _MISSING_STATUSES:
                raise ControlMessageNotFound(
                    f"channel {ref.channel_id} could not be found"
                ) from exc
            raise
        if str(channel.get("guild_id")) != ref.guild_id:
            raise ControlMessageNotFound(
                f"channel {ref.channel_id} is not in guild {ref.guild_id}"
            )
        if channel.get("type") not in TEXT_CHANNEL_TYPES:
            raise ChannelNotText(f"channel {ref.channel_id} is not a text channel")

        try:
            self.discord.edit_message(ref.channel_id, ref.message_id, content, embeds)
        except RequestFailure as exc:
            if exc.status_code == 404:
                raise ControlMessageNotFound(
                    f"message {ref.message_id} could not be found"
                ) from exc
            raise


@dataclass(frozen=True)
class ChannelLocation:
    guild_id: str
    channel_id: str
