class InvalidTargetPower(ValueError):
    def __init__(self, target: str):
        self.target = target
        super().__init__(f"target power {target!r} must be a terminal power state")


class UnknownVMError(LookupError):
    def __init__(self, friendly_name: str):
        self.friendly_name = friendly_name
        super().__init__(f"no configured vm with friendly name {friendly_name!r}")


class ControlMessageNotFound(LookupError):
    pass


class InteractionExpired(ControlMessageNotFound):
    pass


class ChannelNotText(ControlMessageNotFound):
    pass


class VMBusyError(RuntimeError):
    def __init__(self, friendly_name: str):
        self.friendly_name = friendly_name
        super().__init__(f"vm {friendly_name!r} already has an active power request")

    @property
    def user_message(self) -> str:
        return (
            f"Sorry, the {self.friendly_name} server is busy right now. "
            "Please wait until other commands are finished working on this server."
        )


class PreflightError(RuntimeError):
    pass


class VMAlreadyBootedError(VMBusyError):
    def __init__(self, friendly_name: str):
        self.friendly_name = friendly_name
        RuntimeError.__init__(
            self, f"vm {friendly_name!r} already has an active boot request"
        )

    @property
    def user_message(self) -> str:
        return (
            f"The {self.friendly_name} server was already booted and is still running. "
            "It will shut down automatically when its time is up."
        )
