from azure_boot.models import BootStage, PowerStage


POWER_TRANSITIONS: dict[str, set[str]] = {
    PowerStage.REQUESTED.value: {
        PowerStage.IN_PROGRESS.value,
        PowerStage.ERROR.value,
    },
    PowerStage.IN_PROGRESS.value: {
        PowerStage.SUCCESS.value,
        PowerStage.ERROR.value,
    },
    PowerStage.SUCCESS.value: set(),
    PowerStage.ERROR.value: set(),
}

BOOT_TRANSITIONS: dict[str, set[str]] = {
    BootStage.REQUESTED.value: {BootStage.BOOTING.value, BootStage.ERROR.value},
    BootStage.BOOTING.value: {BootStage.RUNNING.value, BootStage.ERROR.value},
    BootStage.RUNNING.value: {
        BootStage.SHUTTING_DOWN.value,
        BootStage.SUCCESS.value,
        BootStage.ERROR.value,
    },
    BootStage.SHUTTING_DOWN.value: {BootStage.SUCCESS.value, BootStage.ERROR.value},
    BootStage.SUCCESS.value: set(),
    BootStage.ERROR.value: set(),
}


class InvalidTransition(RuntimeError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"stage cannot move from {current} to {target}")


def can_transition(transitions: dict[str, set[str]], current: str, target: str) -> bool:
    # Re-entering the same stage is how a stage refreshes its own payload.
    if current == target:
        return True
    return target in transitions.get(current, set())


def check_transition(transitions: dict[str, set[str]], current: str, target: str) -> None:
    if not can_transition(transitions, current, target):
        raise InvalidTransition(current, target)
