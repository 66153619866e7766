import logging
import uuid
from dataclasses import replace
from datetime import timedelta

from sqlalchemy.exc import IntegrityError

from azure_boot.config import VMConfig
from azure_boot.context import BotContext
from azure_boot.control_message import ControlMessage, ControlMessageRef
from azure_boot.errors import InvalidTargetPower, VMBusyError
from azure_boot.models import PowerStage
from azure_boot.power_states import PowerState, is_terminal
from azure_boot.repositories import (
    PowerRequestData,
    get_power_request,
    insert_power_request,
    recent_durations,
    upsert_power_request,
    write_event,
)
from azure_boot.services.progress import ProgressEmbed, mean_duration
from azure_boot.stages import (
    TERMINAL_POWER_STAGES,
    Failed,
    InProgress,
    PowerStageVariant,
    Requested,
    Succeeded,
)
from azure_boot.state_machine import (
    POWER_TRANSITIONS,
    InvalidTransition,
    check_transition,
)


logger = logging.getLogger(__name__)

USER_ERROR = "an unexpected error occurred"


def describe_error(exc: BaseException) -> str:
    return f"{exc.__class__.__name__}: {exc}"


class PowerRequest:
    """Drives one virtual machine toward one terminal power state.

    Every ``poll`` is one tick: observe the vm, render progress to the
    control message, and issue at most one cloud action. The caller persists
    the request with ``save`` after each tick so a restart resumes from the
    last observed stage.
    """

    def __init__(self, ctx: BotContext, data: PowerRequestData):
        self.ctx = ctx
        self.data = data
        self._events: list[tuple[str, dict]] = []

    @classmethod
    def create(
        cls,
        ctx: BotContext,
        control_message: ControlMessageRef,
        vm: VMConfig,
        target_power: PowerState,
        request_id: str | None = None,
    ) -> "PowerRequest":
        if not is_terminal(target_power):
            raise InvalidTargetPower(target_power.value)
        data = PowerRequestData(
            request_id=request_id or uuid.uuid4().hex,
            control_message=control_message,
            vm=vm,
            target_power=target_power,
        )
        return cls(ctx, data)

    @classmethod
    def load(cls, ctx: BotContext, request_id: str) -> "PowerRequest":
        with ctx.session_scope() as session:
            data = get_power_request(session, request_id)
        if data is None:
            raise LookupError(f"power request {request_id} does not exist")
        return cls(ctx, data)

    @property
    def request_id(self) -> str:
        return self.data.request_id

    @property
    def stage(self) -> PowerStageVariant:
        return self.data.stage

    @property
    def terminal(self) -> bool:
        return isinstance(self.data.stage, TERMINAL_POWER_STAGES)

    def claim(self) -> None:
        """Insert a new request, failing if the vm already has an active one."""

        try:
            with self.ctx.session_scope() as session:
                insert_power_request(session, self.data)
                write_event(
                    session,
                    "power_request.created",
                    {
                        "vm": self.data.vm.friendly_name,
                        "target_power": self.data.target_power.value,
                    },
                    self.request_id,
                )
        except IntegrityError as exc:
            raise VMBusyError(self.data.vm.friendly_name) from exc
        self._events.clear()

    def save(self) -> None:
        with self.ctx.session_scope() as session:
            upsert_power_request(session, self.data)
            for event_type, payload in self._events:
                write_event(session, event_type, payload, self.request_id)
        self._events.clear()

    def poll(self) -> None:
        if self.terminal:
            return

        control = ControlMessage(self.ctx.discord, self.data.control_message)
        try:
            self._tick(control)
        except Exception as exc:  # noqa: BLE001
            if self.terminal:
                # The outcome is already recorded; only the final edit failed.
                logger.exception(
                    "power request %s finished but its control message could not be updated",
                    self.request_id,
                )
                return
            logger.exception(
                "failed to poll power request %s vm=%s",
                self.request_id,
                self.data.vm.friendly_name,
            )
            self._advance(
                Failed(
                    failed_at=self.ctx.now(),
                    internal=describe_error(exc),
                    user=USER_ERROR,
                )
            )
            try:
                control.edit(f":warning: Sorry, {USER_ERROR}.")
            except Exception:  # noqa: BLE001
                logger.exception(
                    "could not tell the user that power request %s failed",
                    self.request_id,
                )

    def _tick(self, control: ControlMessage) -> None:
        data = self.data
        data.flip_flop = not data.flip_flop

        power = self.ctx.compute.power_state(data.vm)
        now = self.ctx.now()

        if isinstance(data.stage, Requested):
            self._advance(InProgress(started_at=now, start_power=power))
        stage = data.stage
        if not isinstance(stage, InProgress):
            raise InvalidTransition(stage.name, PowerStage.IN_PROGRESS.value)

        embed = ProgressEmbed(data.vm.friendly_name, data.target_power)
        embed.add_status(power, data.flip_flop)
        embed.add_duration(now - stage.started_at, self._estimate(stage.start_power))

        # Never order a vm around while it is still moving between states.
        if power is not None and not is_terminal(power):
            embed.waiting_on(power)
            control.edit(None, embed.to_dict())
            return

        if power == data.target_power:
            self._advance(
                Succeeded(
                    started_at=stage.started_at,
                    start_power=stage.start_power,
                    finished_at=now,
                )
            )
            embed.done()
            control.edit(None, embed.to_dict())
            return

        grace = timedelta(seconds=self.ctx.settings.action_grace_sec)
        if stage.action_at is not None and now - stage.action_at < grace:
            logger.debug(
                "power request %s waiting for vm=%s to react to the last action",
                self.request_id,
                data.vm.friendly_name,
            )
        else:
            self._issue_action()
            self._advance(replace(stage, action_at=now))

        embed.acting()
        control.edit(None, embed.to_dict())

    def _issue_action(self) -> None:
        vm = self.data.vm
        target = self.data.target_power
        logger.info("issuing %s for vm=%s", target.value, vm.friendly_name)
        if target == PowerState.RUNNING:
            self.ctx.compute.begin_start(vm)
        elif target == PowerState.STOPPED:
            self.ctx.compute.begin_power_off(vm)
        elif target == PowerState.DEALLOCATED:
            self.ctx.compute.begin_deallocate(vm)
        else:
            raise InvalidTargetPower(target.value)

    def _estimate(self, start_power: PowerState | None) -> timedelta | None:
        with self.ctx.session_scope() as session:
            durations = recent_durations(
                session,
                self.data.vm,
                start_power,
                self.data.target_power,
                limit=self.ctx.settings.duration_history_limit,
            )
        return mean_duration(durations)

    def _advance(self, stage: PowerStageVariant) -> None:
        current = self.data.stage.name
        check_transition(POWER_TRANSITIONS, current, stage.name)
        if stage.name != current:
            self._events.append(
                (f"power_request.{stage.name}", {"vm": self.data.vm.friendly_name})
            )
        self.data.stage = stage
