import logging
import uuid
from dataclasses import replace
from datetime import UTC, datetime, timedelta

from azure_boot.config import VMConfig
from azure_boot.context import BotContext
from azure_boot.control_message import (
    ChannelLocation,
    ChannelMessageRef,
    ControlMessageRef,
)
from azure_boot.errors import VMBusyError
from azure_boot.power_states import PowerState
from azure_boot.repositories import (
    BootRequestData,
    get_boot_request,
    upsert_boot_request,
    write_event,
)
from azure_boot.services.guard import active_request_count
from azure_boot.services.power_request import PowerRequest
from azure_boot.stages import (
    TERMINAL_BOOT_STAGES,
    BootFailed,
    Booting,
    BootStageVariant,
    BootSucceeded,
    Failed,
    Running,
    ShuttingDown,
    Succeeded,
)
from azure_boot.state_machine import BOOT_TRANSITIONS, check_transition


logger = logging.getLogger(__name__)

# A vm found in one of these while the boot is running was shut down by hand.
_OFF_STATES = {PowerState.DEALLOCATED, PowerState.STOPPED}


def discord_timestamp(value: datetime) -> str:
    return f"<t:{int(value.replace(tzinfo=UTC).timestamp())}:R>"


class BootRequest:
    """Starts a vm for a while, then shuts it down again.

    Stages: requested -> booting -> running -> shutting_down -> success, with
    error reached only when a child power request fails. The boot request
    only keeps the id of the power request doing the work in each phase and
    reloads it on every poll; the poller advances that power request on its
    own.
    """

    def __init__(self, ctx: BotContext, data: BootRequestData):
        self.ctx = ctx
        self.data = data
        self._events: list[tuple[str, dict]] = []

    @classmethod
    def create(
        cls,
        ctx: BotContext,
        vm: VMConfig,
        follow_up: ChannelLocation,
        boot_request_id: str | None = None,
    ) -> "BootRequest":
        data = BootRequestData(
            boot_request_id=boot_request_id or uuid.uuid4().hex,
            vm=vm,
            follow_up=follow_up,
        )
        return cls(ctx, data)

    @classmethod
    def load(cls, ctx: BotContext, boot_request_id: str) -> "BootRequest":
        with ctx.session_scope() as session:
            data = get_boot_request(session, boot_request_id)
        if data is None:
            raise LookupError(f"boot request {boot_request_id} does not exist")
        return cls(ctx, data)

    @property
    def boot_request_id(self) -> str:
        return self.data.boot_request_id

    @property
    def stage(self) -> BootStageVariant:
        return self.data.stage

    @property
    def terminal(self) -> bool:
        return isinstance(self.data.stage, TERMINAL_BOOT_STAGES)

    def init_boot(
        self, control_message: ControlMessageRef, power_request_id: str | None = None
    ) -> PowerRequest:
        """Create and persist the power request that starts the vm."""

        power_request = PowerRequest.create(
            self.ctx,
            control_message,
            self.data.vm,
            PowerState.RUNNING,
            request_id=power_request_id,
        )
        power_request.claim()
        self._advance(Booting(power_request_id=power_request.request_id))
        return power_request

    def save(self) -> None:
        with self.ctx.session_scope() as session:
            upsert_boot_request(session, self.data)
            for event_type, payload in self._events:
                write_event(session, event_type, payload, self.boot_request_id)
        self._events.clear()

    def poll(self) -> None:
        if self.terminal:
            return
        try:
            self._tick()
        except Exception:  # noqa: BLE001
            # Only a failed child ends the boot; anything else is retried next tick.
            logger.exception(
                "failed to poll boot request %s vm=%s, staying %s",
                self.boot_request_id,
                self.data.vm.friendly_name,
                self.data.stage.name,
            )

    def _tick(self) -> None:
        stage = self.data.stage
        if isinstance(stage, Booting):
            self._poll_booting(stage)
        elif isinstance(stage, Running):
            self._poll_running(stage)
        elif isinstance(stage, ShuttingDown):
            self._poll_shutting_down(stage)

    def _poll_booting(self, stage: Booting) -> None:
        child = PowerRequest.load(self.ctx, stage.power_request_id).stage
        if isinstance(child, Failed):
            self._advance(
                BootFailed(
                    failed_at=self.ctx.now(),
                    reason=f"boot power request {stage.power_request_id} failed: {child.internal}",
                )
            )
            return
        if not isinstance(child, Succeeded):
            return

        expire_at = self.ctx.now() + timedelta(seconds=self.ctx.settings.boot_ttl_sec)
        logger.info(
            "vm=%s booted, shutting down at %s",
            self.data.vm.friendly_name,
            expire_at.isoformat(),
        )
        self._advance(Running(expire_at=expire_at))

    def _poll_running(self, stage: Running) -> None:
        vm = self.data.vm
        now = self.ctx.now()

        power = self.ctx.compute.power_state(vm)
        if power in _OFF_STATES:
            logger.info("vm=%s was turned off before its boot expired", vm.friendly_name)
            self._advance(BootSucceeded(finished_at=now))
            return

        if now >= stage.expire_at:
            self._begin_shutdown(stage)
            return

        warning_sec = self.ctx.settings.boot_warning_sec
        warn_at = stage.expire_at - timedelta(seconds=warning_sec)
        if stage.warning_message is None and warning_sec > 0 and now >= warn_at:
            try:
                warning = self._post_follow_up(
                    f":alarm_clock: The {vm.friendly_name} server will shut down "
                    f"automatically {discord_timestamp(stage.expire_at)}."
                )
            except Exception:  # noqa: BLE001
                logger.exception(
                    "could not post shutdown warning for vm=%s", vm.friendly_name
                )
                return
            self._advance(replace(stage, warning_message=warning))

    def _begin_shutdown(self, stage: Running) -> None:
        vm = self.data.vm
        if active_request_count(self.ctx, vm) > 0:
            logger.info(
                "boot request %s waiting for vm=%s to be free before shutdown",
                self.boot_request_id,
                vm.friendly_name,
            )
            return

        control_message: ControlMessageRef | None = stage.warning_message
        if control_message is None:
            try:
                control_message = self._post_follow_up(
                    f":stop_sign: Shutting down the {vm.friendly_name} server."
                )
            except Exception:  # noqa: BLE001
                logger.exception(
                    "could not post shutdown message for vm=%s, retrying next tick",
                    vm.friendly_name,
                )
                return

        power_request = PowerRequest.create(
            self.ctx, control_message, vm, PowerState.DEALLOCATED
        )
        try:
            power_request.claim()
        except VMBusyError:
            logger.info("vm=%s became busy before shutdown, retrying", vm.friendly_name)
            return
        self._advance(ShuttingDown(power_request_id=power_request.request_id))

    def _poll_shutting_down(self, stage: ShuttingDown) -> None:
        child = PowerRequest.load(self.ctx, stage.power_request_id).stage
        if isinstance(child, Failed):
            self._advance(
                BootFailed(
                    failed_at=self.ctx.now(),
                    reason=f"shutdown power request {stage.power_request_id} failed: {child.internal}",
                )
            )
        elif isinstance(child, Succeeded):
            self._advance(BootSucceeded(finished_at=self.ctx.now()))

    def _post_follow_up(self, content: str) -> ChannelMessageRef:
        location = self.data.follow_up
        message = self.ctx.discord.create_message(location.channel_id, content)
        return ChannelMessageRef(
            guild_id=location.guild_id,
            channel_id=location.channel_id,
            message_id=str(message["id"]),
        )

    def _advance(self, stage: BootStageVariant) -> None:
        current = self.data.stage.name
        check_transition(BOOT_TRANSITIONS, current, stage.name)
        if stage.name != current:
            self._events.append(
                (f"boot_request.{stage.name}", {"vm": self.data.vm.friendly_name})
            )
        self.data.stage = stage
