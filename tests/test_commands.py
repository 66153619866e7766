import pytest
from sqlalchemy import func, select

from azure_boot.control_message import InteractionRef
from azure_boot.db import SessionLocal
from azure_boot.errors import VMBusyError
from azure_boot.models import BootRequestRecord, PowerRequestRecord
from azure_boot.power_states import PowerState
from azure_boot.services.commands import (
    BOOT_COMMAND,
    SHUTDOWN_COMMAND,
    CommandInvocation,
    build_application_commands,
    handle_command,
    has_permission,
    parse_invocation,
)
from azure_boot.services.guard import ensure_vm_idle
from azure_boot.services.poller import poll_once
from azure_boot.services.power_request import PowerRequest
from azure_boot.stages import InProgress
from tests.fakes import (
    FACTORIO,
    MINECRAFT,
    FakeCompute,
    FakeDiscord,
    make_context,
    reset_db,
)


BUSY = (
    "Sorry, the Minecraft server is busy right now. "
    "Please wait until other commands are finished working on this server."
)
ALREADY_BOOTED = (
    "The Minecraft server was already booted and is still running. "
    "It will shut down automatically when its time is up."
)


def setup_function() -> None:
    reset_db()


def _invocation(command: str, server: str = "Minecraft", n: int = 1) -> CommandInvocation:
    return CommandInvocation(
        interaction_id=f"i{n}",
        token=f"tok{n}",
        command_name=command,
        server=server,
        guild_id="g1",
        channel_id="c1",
        member_roles=("players",),
    )


def _count(model) -> int:
    db = SessionLocal()
    try:
        return db.scalar(select(func.count()).select_from(model)) or 0
    finally:
        db.close()


def test_parse_invocation_reads_server_option_and_roles():
    payload = {
        "id": "123",
        "token": "tok",
        "type": 2,
        "guild_id": "g1",
        "channel_id": "c1",
        "member": {"roles": ["r1", "r2"]},
        "data": {
            "name": "boot",
            "options": [{"name": "server", "type": 3, "value": "Minecraft"}],
        },
    }

    invocation = parse_invocation(payload)

    assert invocation == CommandInvocation(
        interaction_id="123",
        token="tok",
        command_name="boot",
        server="Minecraft",
        guild_id="g1",
        channel_id="c1",
        member_roles=("r1", "r2"),
    )


def test_commands_offer_every_configured_vm():
    commands = build_application_commands([MINECRAFT, FACTORIO])

    assert [command["name"] for command in commands] == [BOOT_COMMAND, SHUTDOWN_COMMAND]
    for command in commands:
        option = command["options"][0]
        assert option["name"] == "server"
        assert option["required"] is True
        assert [choice["value"] for choice in option["choices"]] == [
            "Minecraft",
            "Factorio",
        ]


def test_permission_role_is_optional():
    invocation = _invocation(BOOT_COMMAND)
    assert has_permission(make_context().settings, invocation)
    assert has_permission(
        make_context(discord_permission_role_id="players").settings, invocation
    )
    assert not has_permission(
        make_context(discord_permission_role_id="admins").settings, invocation
    )


def test_boot_command_starts_vm_and_records_boot():
    compute = FakeCompute(Minecraft=PowerState.DEALLOCATED)
    discord = FakeDiscord()
    ctx = make_context(compute, discord)

    handle_command(ctx, _invocation(BOOT_COMMAND))

    assert compute.actions() == [("begin_start", "Minecraft")]
    assert discord.edits[-1]["target"] == "tok1"
    assert discord.last_embed()["title"] == ":rocket: Start Minecraft Server"
    assert _count(PowerRequestRecord) == 1
    assert _count(BootRequestRecord) == 1


def test_shutdown_command_deallocates_vm():
    compute = FakeCompute(Minecraft=PowerState.RUNNING)
    discord = FakeDiscord()
    ctx = make_context(compute, discord)

    handle_command(ctx, _invocation(SHUTDOWN_COMMAND))

    assert compute.actions() == [("begin_deallocate", "Minecraft")]
    assert discord.last_embed()["title"] == ":stop_sign: Shutdown Minecraft Server"
    assert _count(BootRequestRecord) == 0


def test_command_for_busy_vm_is_rejected():
    compute = FakeCompute(Minecraft=PowerState.STARTING)
    discord = FakeDiscord()
    ctx = make_context(compute, discord)
    existing = PowerRequest.create(
        ctx, InteractionRef("i0", "tok0"), MINECRAFT, PowerState.RUNNING
    )
    existing.claim()
    existing.poll()
    existing.save()
    assert isinstance(existing.stage, InProgress)

    handle_command(ctx, _invocation(BOOT_COMMAND))

    assert discord.edits[-1] == {"target": "tok1", "content": BUSY, "embeds": []}
    assert _count(PowerRequestRecord) == 1
    assert _count(BootRequestRecord) == 0
    with pytest.raises(VMBusyError):
        ensure_vm_idle(ctx, MINECRAFT)


def test_busy_vm_does_not_block_other_vms():
    compute = FakeCompute(Minecraft=PowerState.STARTING, Factorio=PowerState.RUNNING)
    ctx = make_context(compute, FakeDiscord())
    PowerRequest.create(
        ctx, InteractionRef("i0", "tok0"), MINECRAFT, PowerState.RUNNING
    ).claim()

    handle_command(ctx, _invocation(SHUTDOWN_COMMAND, server="Factorio"))

    assert compute.actions() == [("begin_deallocate", "Factorio")]
    assert _count(PowerRequestRecord) == 2


def test_unknown_server_gets_generic_error():
    discord = FakeDiscord()
    ctx = make_context(FakeCompute(), discord)

    handle_command(ctx, _invocation(BOOT_COMMAND, server="Terraria"))

    assert discord.edits[-1]["content"] == ":warning: Sorry, an unexpected error occurred."
    assert _count(PowerRequestRecord) == 0


@pytest.mark.parametrize(
    "command, action",
    [(BOOT_COMMAND, "begin_start"), (SHUTDOWN_COMMAND, "begin_deallocate")],
)
def test_poller_tick_during_command_does_not_double_fire(monkeypatch, command, action):
    start = PowerState.DEALLOCATED if command == BOOT_COMMAND else PowerState.RUNNING
    compute = FakeCompute(Minecraft=start)
    ctx = make_context(compute, FakeDiscord())
    claim = PowerRequest.claim

    def claim_then_poll(self):
        claim(self)
        poll_once(ctx)

    monkeypatch.setattr(PowerRequest, "claim", claim_then_poll)

    handle_command(ctx, _invocation(command))

    assert compute.actions() == [(action, "Minecraft")]
    with SessionLocal() as db:
        stages = list(db.scalars(select(PowerRequestRecord.stage)))
    assert stages == ["in_progress"]


def test_second_boot_while_booted_is_rejected():
    compute = FakeCompute(Minecraft=PowerState.RUNNING)
    discord = FakeDiscord()
    ctx = make_context(compute, discord)

    handle_command(ctx, _invocation(BOOT_COMMAND))
    poll_once(ctx)
    assert _count(BootRequestRecord) == 1

    handle_command(ctx, _invocation(BOOT_COMMAND, n=2))

    assert discord.edits[-1] == {
        "target": "tok2",
        "content": ALREADY_BOOTED,
        "embeds": [],
    }
    assert _count(BootRequestRecord) == 1
    assert _count(PowerRequestRecord) == 1
    assert compute.actions() == []
