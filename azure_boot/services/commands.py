import logging
import uuid
from dataclasses import dataclass

from azure_boot.config import Settings, VMConfig, vm_by_friendly_name
from azure_boot.context import BotContext
from azure_boot.control_message import ChannelLocation, ControlMessage, InteractionRef
from azure_boot.errors import UnknownVMError, VMBusyError
from azure_boot.power_states import PowerState
from azure_boot.services.boot_request import BootRequest
from azure_boot.services.guard import ensure_not_booted, ensure_vm_idle
from azure_boot.services.power_request import USER_ERROR, PowerRequest


logger = logging.getLogger(__name__)

BOOT_COMMAND = "boot"
SHUTDOWN_COMMAND = "shutdown"
SERVER_OPTION = "server"

# https://discord.com/developers/docs/interactions/application-commands
INTERACTION_PING = 1
INTERACTION_APPLICATION_COMMAND = 2
OPTION_TYPE_STRING = 3
CHAT_INPUT_COMMAND = 1

GENERIC_FAILURE = f":warning: Sorry, {USER_ERROR}."
PERMISSION_DENIED = "Sorry, you don't have permission to use this command."


@dataclass(frozen=True)
class CommandInvocation:
    interaction_id: str
    token: str
    command_name: str
    server: str | None
    guild_id: str | None
    channel_id: str | None
    member_roles: tuple[str, ...] = ()


def parse_invocation(payload: dict) -> CommandInvocation:
    data = payload.get("data") or {}
    server = None
    for option in data.get("options") or []:
        if option.get("name") == SERVER_OPTION:
            server = str(option.get("value"))
    member = payload.get("member") or {}
    return CommandInvocation(
        interaction_id=str(payload["id"]),
        token=payload["token"],
        command_name=data.get("name", ""),
        server=server,
        guild_id=payload.get("guild_id"),
        channel_id=payload.get("channel_id"),
        member_roles=tuple(str(role) for role in member.get("roles") or []),
    )


def _server_command(name: str, description: str, option_description: str, choices):
    return {
        "name": name,
        "type": CHAT_INPUT_COMMAND,
        "description": description,
        "dm_permission": False,
        "options": [
            {
                "name": SERVER_OPTION,
                "description": option_description,
                "type": OPTION_TYPE_STRING,
                "required": True,
                "choices": choices,
            }
        ],
    }


def build_application_commands(vms: list[VMConfig]) -> list[dict]:
    choices = [{"name": vm.friendly_name, "value": vm.friendly_name} for vm in vms]
    return [
        _server_command(BOOT_COMMAND, "Start a game server", "The server to start", choices),
        _server_command(
            SHUTDOWN_COMMAND, "Turn off a game server", "The server to shutdown", choices
        ),
    ]


def has_permission(settings: Settings, invocation: CommandInvocation) -> bool:
    role_id = settings.discord_permission_role_id
    return role_id is None or role_id in invocation.member_roles


def handle_command(ctx: BotContext, invocation: CommandInvocation) -> None:
    """Carry out a command whose interaction was already answered as deferred."""

    ref = InteractionRef(interaction_id=invocation.interaction_id, token=invocation.token)
    control = ControlMessage(ctx.discord, ref)
    try:
        vm = vm_by_friendly_name(ctx.settings, invocation.server or "")
        if invocation.command_name == BOOT_COMMAND:
            _boot(ctx, vm, ref, invocation)
        elif invocation.command_name == SHUTDOWN_COMMAND:
            _shutdown(ctx, vm, ref)
        else:
            logger.warning("unknown command %r", invocation.command_name)
            control.edit(GENERIC_FAILURE)
    except VMBusyError as exc:
        logger.info("rejected %s: %s", invocation.command_name, exc)
        control.edit(exc.user_message)
    except UnknownVMError as exc:
        logger.warning("rejected %s: %s", invocation.command_name, exc)
        control.edit(GENERIC_FAILURE)
    except Exception:  # noqa: BLE001
        logger.exception("command %s failed", invocation.command_name)
        try:
            control.edit(GENERIC_FAILURE)
        except Exception:  # noqa: BLE001
            logger.exception("could not report failed command to the user")


def _boot(
    ctx: BotContext, vm: VMConfig, ref: InteractionRef, invocation: CommandInvocation
) -> None:
    ensure_vm_idle(ctx, vm)
    ensure_not_booted(ctx, vm)
    boot = BootRequest.create(
        ctx,
        vm,
        ChannelLocation(
            guild_id=invocation.guild_id or "", channel_id=invocation.channel_id or ""
        ),
    )
    # Held from the insert through the first tick so the poller leaves it alone.
    power_request_id = uuid.uuid4().hex
    with ctx.request_locks.hold(power_request_id):
        power_request = boot.init_boot(ref, power_request_id)
        power_request.poll()
        power_request.save()
    boot.poll()
    boot.save()


def _shutdown(ctx: BotContext, vm: VMConfig, ref: InteractionRef) -> None:
    ensure_vm_idle(ctx, vm)
    power_request = PowerRequest.create(ctx, ref, vm, PowerState.DEALLOCATED)
    with ctx.request_locks.hold(power_request.request_id):
        power_request.claim()
        power_request.poll()
        power_request.save()
