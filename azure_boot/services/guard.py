from azure_boot.config import VMConfig
from azure_boot.context import BotContext
from azure_boot.errors import VMAlreadyBootedError, VMBusyError
from azure_boot.repositories import (
    count_active_boot_requests,
    count_active_power_requests,
)


def active_request_count(ctx: BotContext, vm: VMConfig) -> int:
    with ctx.session_scope() as session:
        return count_active_power_requests(session, vm.friendly_name)


def ensure_vm_idle(ctx: BotContext, vm: VMConfig) -> None:
    # Check-then-act; PowerRequest.claim backs this with a unique column.
    if active_request_count(ctx, vm) > 0:
        raise VMBusyError(vm.friendly_name)


def ensure_not_booted(ctx: BotContext, vm: VMConfig) -> None:
    with ctx.session_scope() as session:
        active = count_active_boot_requests(session, vm.friendly_name)
    if active > 0:
        raise VMAlreadyBootedError(vm.friendly_name)
