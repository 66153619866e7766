"""Azure virtual machine power states.

Codes follow the instance view status codes Azure reports, for example
``PowerState/running``. Anything else is treated as unknown and represented
by ``None``.
"""

from collections.abc import Iterable
from enum import Enum


POWER_STATE_PREFIX = "PowerState/"


class PowerState(str, Enum):
    DEALLOCATED = "PowerState/deallocated"
    DEALLOCATING = "PowerState/deallocating"
    RUNNING = "PowerState/running"
    STARTING = "PowerState/starting"
    STOPPED = "PowerState/stopped"
    STOPPING = "PowerState/stopping"


TERMINAL_POWER_STATES = frozenset(
    {PowerState.DEALLOCATED, PowerState.RUNNING, PowerState.STOPPED}
)

FRIENDLY_NAMES = {
    PowerState.DEALLOCATED: "Turned Off",
    PowerState.DEALLOCATING: "Turning Off",
    PowerState.RUNNING: "Running",
    PowerState.STARTING: "Starting",
    PowerState.STOPPED: "Stopped",
    PowerState.STOPPING: "Stopping",
}

_TRANSITIONAL = {
    PowerState.DEALLOCATED: PowerState.DEALLOCATING,
    PowerState.RUNNING: PowerState.STARTING,
    PowerState.STOPPED: PowerState.STOPPING,
}


def parse_power_state(code: str | None) -> PowerState | None:
    if not code:
        return None
    try:
        return PowerState(code)
    except ValueError:
        return None


def latest_power_state(codes: Iterable[str | None]) -> PowerState | None:
    """Return the most recent power state among instance view status codes.

    Azure lists provisioning and power statuses together; the last
    ``PowerState/`` entry is the current one.
    """

    power_codes = [code for code in codes if code and code.startswith(POWER_STATE_PREFIX)]
    if not power_codes:
        return None
    return parse_power_state(power_codes[-1])


def is_terminal(power: PowerState) -> bool:
    return power in TERMINAL_POWER_STATES


def friendly_name(power: PowerState | None) -> str:
    if power is None:
        return "Unknown"
    return FRIENDLY_NAMES[power]


def transitional_for(target: PowerState) -> PowerState:
    if target not in _TRANSITIONAL:
        raise ValueError(f"power state {target.value} must be terminal")
    return _TRANSITIONAL[target]
