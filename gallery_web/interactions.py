"""
Interaction payloads from the chat platform and their dispatch.
Only called with payloads whose signature has already been verified.
PING is answered with PONG; application commands go through a guild/permission gate
and then to a registered handler. Replies are ephemeral embeds.
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

import httpx

from gallery_web.config import Settings
from gallery_web.errors import ConfigError, MalformedInteraction
from gallery_web.permissions import has_permission
from gallery_web.pkce import randstring

logger = logging.getLogger(__name__)

# Interaction types
PING = 1
APPLICATION_COMMAND = 2

# Interaction response types
PONG = 1
CHANNEL_MESSAGE_WITH_SOURCE = 4

FLAG_EPHEMERAL = 1 << 6

# Command registration: a message (context menu) command, installable by users,
# usable in guilds, bot DMs and private channels
MESSAGE_COMMAND = 3
INTEGRATION_USER_INSTALL = 1
COMMAND_CONTEXTS = [0, 1, 2]

UPLOAD_COMMAND_NAME = "Save Attached Images"


@dataclass
class Interaction:
    id: str
    type: int
    guild_id: int | None = None
    app_permissions: int | None = None
    data: dict = field(default_factory=dict)
    raw: dict = field(default_factory=dict, repr=False)

    @property
    def command_name(self) -> str | None:
        return self.data.get("name")


def _optional_int(payload: dict, key: str) -> int | None:
    value = payload.get(key)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MalformedInteraction(f"{key} is not an integer") from None


def parse_interaction(body: bytes) -> Interaction:
    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedInteraction(f"body is not JSON: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedInteraction("body is not a JSON object")
    try:
        kind = int(payload["type"])
    except (KeyError, TypeError, ValueError):
        raise MalformedInteraction("missing or invalid interaction type") from None
    data = payload.get("data") or {}
    if not isinstance(data, dict):
        raise MalformedInteraction("data is not an object")
    return Interaction(
        id=str(payload.get("id", "")),
        type=kind,
        guild_id=_optional_int(payload, "guild_id"),
        app_permissions=_optional_int(payload, "app_permissions"),
        data=data,
        raw=payload,
    )


class MessageResponse:
    """Ephemeral embed reply: a description plus inline fields."""

    def __init__(self, description: str):
        self.description = description
        self.fields: list[tuple[str, str]] = []

    def add_field(self, title: str, content: str) -> None:
        self.fields.append((title, content))

    def interaction_response(self) -> dict:
        embed: dict[str, Any] = {"description": self.description}
        if self.fields:
            embed["fields"] = [{"name": t, "value": c, "inline": True} for t, c in self.fields]
        return {
            "type": CHANNEL_MESSAGE_WITH_SOURCE,
            "data": {"flags": FLAG_EPHEMERAL, "embeds": [embed]},
        }


CommandHandler = Callable[[Interaction], Awaitable[MessageResponse]]


def _in_home_guild(interaction: Interaction, settings: Settings) -> bool:
    if interaction.guild_id != settings.guild_id:
        return False
    if interaction.app_permissions is None:
        return False
    return has_permission(interaction.app_permissions, settings.required_permission)


async def dispatch(
    interaction: Interaction,
    settings: Settings,
    commands: dict[str, CommandHandler],
) -> dict:
    if interaction.type == PING:
        return {"type": PONG}
    if interaction.type != APPLICATION_COMMAND:
        return MessageResponse("Unsupported interaction kind").interaction_response()

    if not _in_home_guild(interaction, settings):
        return MessageResponse(
            "This command is only available in the main server to members with the required permission."
        ).interaction_response()

    handler = commands.get(interaction.command_name or "")
    if handler is None:
        logger.info("Unknown command %r", interaction.command_name)
        return MessageResponse("Unknown command").interaction_response()
    try:
        response = await handler(interaction)
    except Exception as e:
        logger.exception("Failed to process interaction %s", interaction.id)
        response = MessageResponse(f"Failed to process your request: {e}")
    return response.interaction_response()


class Uploader(Protocol):
    """Object storage collaborator: fetch url and store it as upload_id/seq."""

    async def upload_link(self, upload_id: str, seq: int, url: str) -> None:
        ...


def make_upload_command(uploader: Uploader, root_url: str) -> CommandHandler:
    """Handler for the message command that saves a message's image attachments."""

    async def save_attached_images(interaction: Interaction) -> MessageResponse:
        target = interaction.data.get("target_id")
        resolved = interaction.data.get("resolved")
        if not target:
            raise MalformedInteraction("Missing target ID")
        if not resolved:
            raise MalformedInteraction("Missing resolved data")
        message = (resolved.get("messages") or {}).get(str(target))
        if message is None:
            raise MalformedInteraction("Message not sent in resolved data")

        attachments = message.get("attachments") or []
        images = [a for a in attachments if "image" in (a.get("content_type") or "")]
        skipped = len(attachments) - len(images)

        upload_id = randstring(16)
        results = await asyncio.gather(
            *(uploader.upload_link(upload_id, seq, a["url"]) for seq, a in enumerate(images)),
            return_exceptions=True,
        )
        failures = 0
        for result in results:
            if isinstance(result, BaseException):
                failures += 1
                logger.error("Upload of attachment failed: %r", result)
        uploaded = len(results) - failures

        if uploaded == 0:
            response = MessageResponse("Found no attachments")
        else:
            response = MessageResponse(f"Uploaded {uploaded} attachments: <{root_url}/{upload_id}/>")
        if skipped:
            response.add_field("Skipped", str(skipped))
        if failures:
            response.add_field("Failed", str(failures))
        return response

    return save_attached_images


def command_definitions() -> list[dict]:
    return [
        {
            "name": UPLOAD_COMMAND_NAME,
            "description": "",
            "type": MESSAGE_COMMAND,
            "integration_types": [INTEGRATION_USER_INSTALL],
            "contexts": COMMAND_CONTEXTS,
        }
    ]


async def register_commands(http: httpx.AsyncClient, settings: Settings) -> None:
    """
    Overwrite the application's global commands with the ones handled here.
    Raises ConfigError without bot credentials and httpx.HTTPError when the platform refuses.
    """
    if settings.application_id is None or not settings.bot_token:
        raise ConfigError("APPLICATION_ID and DISCORD_TOKEN are required to register commands")
    url = f"{settings.api_url}/applications/{settings.application_id}/commands"
    commands = command_definitions()
    try:
        response = await http.put(
            url,
            json=commands,
            headers={"Authorization": f"Bot {settings.bot_token}"},
        )
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error("Registering application commands failed: %s", e)
        raise
    logger.info("Registered %d application commands", len(commands))
