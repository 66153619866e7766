import threading

from azure_boot.control_message import ChannelLocation, InteractionRef
from azure_boot.loops import start_loops
from azure_boot.power_states import PowerState
from azure_boot.services.boot_request import BootRequest
from azure_boot.services.poller import poll_once
from azure_boot.services.power_request import PowerRequest
from azure_boot.stages import Booting, Failed, InProgress, Running, Succeeded
from tests.fakes import (
    FACTORIO,
    MINECRAFT,
    FakeClock,
    FakeCompute,
    FakeDiscord,
    make_context,
    reset_db,
)


def setup_function() -> None:
    reset_db()


def test_poll_once_advances_requests_for_every_vm():
    compute = FakeCompute(Minecraft=PowerState.DEALLOCATED, Factorio=PowerState.RUNNING)
    discord = FakeDiscord()
    ctx = make_context(compute, discord)
    start = PowerRequest.create(
        ctx, InteractionRef("i1", "tok1"), MINECRAFT, PowerState.RUNNING
    )
    start.claim()
    stop = PowerRequest.create(
        ctx, InteractionRef("i2", "tok2"), FACTORIO, PowerState.DEALLOCATED
    )
    stop.claim()

    poll_once(ctx)

    assert isinstance(PowerRequest.load(ctx, start.request_id).stage, InProgress)
    assert isinstance(PowerRequest.load(ctx, stop.request_id).stage, InProgress)
    assert sorted(compute.actions()) == [
        ("begin_deallocate", "Factorio"),
        ("begin_start", "Minecraft"),
    ]


def test_poll_once_skips_finished_requests():
    compute = FakeCompute(Minecraft=PowerState.RUNNING)
    ctx = make_context(compute, FakeDiscord())
    request = PowerRequest.create(
        ctx, InteractionRef("i1", "tok1"), MINECRAFT, PowerState.RUNNING
    )
    request.claim()

    poll_once(ctx)
    assert isinstance(PowerRequest.load(ctx, request.request_id).stage, Succeeded)
    calls = len(compute.calls)

    poll_once(ctx)
    assert len(compute.calls) == calls


def test_one_failing_request_does_not_stop_the_others():
    compute = FakeCompute(Factorio=PowerState.RUNNING)
    ctx = make_context(compute, FakeDiscord())
    broken = PowerRequest.create(
        ctx, InteractionRef("i1", "tok1"), MINECRAFT, PowerState.RUNNING
    )
    broken.claim()
    healthy = PowerRequest.create(
        ctx, InteractionRef("i2", "tok2"), FACTORIO, PowerState.RUNNING
    )
    healthy.claim()

    original = compute.power_state

    def flaky_power_state(vm):
        if vm.friendly_name == "Minecraft":
            raise RuntimeError("throttled")
        return original(vm)

    compute.power_state = flaky_power_state

    poll_once(ctx)

    assert isinstance(PowerRequest.load(ctx, broken.request_id).stage, Failed)
    assert isinstance(PowerRequest.load(ctx, healthy.request_id).stage, Succeeded)


def test_boot_request_sees_child_result_in_the_same_tick():
    compute = FakeCompute(Minecraft=PowerState.DEALLOCATED)
    clock = FakeClock()
    ctx = make_context(compute, FakeDiscord(), clock)
    boot = BootRequest.create(ctx, MINECRAFT, ChannelLocation("g1", "c1"))
    boot.init_boot(InteractionRef("i1", "tok1"))
    boot.save()

    poll_once(ctx)
    assert isinstance(BootRequest.load(ctx, boot.boot_request_id).stage, Booting)

    compute.power["Minecraft"] = PowerState.RUNNING
    clock.advance(seconds=5)
    poll_once(ctx)

    assert isinstance(BootRequest.load(ctx, boot.boot_request_id).stage, Running)


def test_loop_polls_until_stopped(monkeypatch):
    stop_event = threading.Event()
    seen = []

    def fake_poll_once(ctx):
        seen.append(ctx)
        stop_event.set()

    monkeypatch.setattr("azure_boot.loops.poll_once", fake_poll_once)
    ctx = make_context(poll_interval_sec=1)

    threads = start_loops(ctx, stop_event)
    for thread in threads:
        thread.join(timeout=2)

    assert len(seen) == 1
    assert seen[0] is ctx
    assert not any(thread.is_alive() for thread in threads)


def test_poll_once_skips_requests_held_by_a_command():
    compute = FakeCompute(Minecraft=PowerState.DEALLOCATED)
    ctx = make_context(compute, FakeDiscord())
    request = PowerRequest.create(
        ctx, InteractionRef("i1", "tok1"), MINECRAFT, PowerState.RUNNING
    )
    request.claim()

    with ctx.request_locks.hold(request.request_id) as held:
        assert held
        poll_once(ctx)
        assert compute.calls == []
        with ctx.request_locks.hold(request.request_id) as again:
            assert not again

    poll_once(ctx)
    assert compute.actions() == [("begin_start", "Minecraft")]
