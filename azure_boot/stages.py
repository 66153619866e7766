"""Stage variants for power and boot requests.

Each request holds exactly one of these at a time. The variant carries the
fields valid for its stage and nothing else; ``name`` is the discriminator
stored in the ``stage`` column.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar

from azure_boot.control_message import ChannelMessageRef
from azure_boot.models import BootStage, PowerStage
from azure_boot.power_states import PowerState


@dataclass(frozen=True)
class Requested:
    name: ClassVar[str] = PowerStage.REQUESTED.value


@dataclass(frozen=True)
class InProgress:
    name: ClassVar[str] = PowerStage.IN_PROGRESS.value

    started_at: datetime
    start_power: PowerState | None
    action_at: datetime | None = None


@dataclass(frozen=True)
class Succeeded:
    name: ClassVar[str] = PowerStage.SUCCESS.value

    started_at: datetime
    start_power: PowerState | None
    finished_at: datetime


@dataclass(frozen=True)
class Failed:
    name: ClassVar[str] = PowerStage.ERROR.value

    failed_at: datetime
    internal: str
    user: str


PowerStageVariant = Requested | InProgress | Succeeded | Failed


@dataclass(frozen=True)
class BootRequested:
    name: ClassVar[str] = BootStage.REQUESTED.value


@dataclass(frozen=True)
class Booting:
    name: ClassVar[str] = BootStage.BOOTING.value

    power_request_id: str


@dataclass(frozen=True)
class Running:
    name: ClassVar[str] = BootStage.RUNNING.value

    expire_at: datetime
    warning_message: ChannelMessageRef | None = None


@dataclass(frozen=True)
class ShuttingDown:
    name: ClassVar[str] = BootStage.SHUTTING_DOWN.value

    power_request_id: str


@dataclass(frozen=True)
class BootSucceeded:
    name: ClassVar[str] = BootStage.SUCCESS.value

    finished_at: datetime


@dataclass(frozen=True)
class BootFailed:
    name: ClassVar[str] = BootStage.ERROR.value

    failed_at: datetime
    reason: str


BootStageVariant = (
    BootRequested | Booting | Running | ShuttingDown | BootSucceeded | BootFailed
)

TERMINAL_POWER_STAGES = (Succeeded, Failed)
TERMINAL_BOOT_STAGES = (BootSucceeded, BootFailed)
