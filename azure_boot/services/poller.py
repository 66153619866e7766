import logging
from concurrent.futures import ThreadPoolExecutor

from azure_boot.context import BotContext
from azure_boot.repositories import (
    list_pending_boot_request_ids,
    list_pending_power_request_ids,
)
from azure_boot.services.boot_request import BootRequest
from azure_boot.services.power_request import PowerRequest


logger = logging.getLogger(__name__)


def advance_power_request(ctx: BotContext, request_id: str) -> None:
    with ctx.request_locks.hold(request_id) as held:
        if not held:
            logger.debug("power request %s is being ticked elsewhere, skipping", request_id)
            return
        request = PowerRequest.load(ctx, request_id)
        logger.debug(
            "polling power request %s vm=%s", request_id, request.data.vm.friendly_name
        )
        request.poll()
        request.save()


def advance_boot_request(ctx: BotContext, boot_request_id: str) -> None:
    request = BootRequest.load(ctx, boot_request_id)
    request.poll()
    request.save()


def poll_once(ctx: BotContext) -> None:
    """Advance every pending request by one tick.

    Power requests for different vms run concurrently; the call returns only
    once all of them have settled, so the next tick never overlaps this one.
    Boot requests run afterwards so they observe this tick's results.
    """

    with ctx.session_scope() as session:
        power_request_ids = list_pending_power_request_ids(session)

    if power_request_ids:
        with ThreadPoolExecutor(
            max_workers=len(power_request_ids), thread_name_prefix="power-request"
        ) as pool:
            futures = {
                pool.submit(advance_power_request, ctx, request_id): request_id
                for request_id in power_request_ids
            }
        for future, request_id in futures.items():
            exc = future.exception()
            if exc is not None:
                logger.error(
                    "power request %s tick failed: %s",
                    request_id,
                    exc,
                    exc_info=exc,
                )

    with ctx.session_scope() as session:
        boot_request_ids = list_pending_boot_request_ids(session)

    for boot_request_id in boot_request_ids:
        try:
            advance_boot_request(ctx, boot_request_id)
        except Exception as exc:  # noqa: BLE001
            logger.exception("boot request %s tick failed: %s", boot_request_id, exc)
