import logging
import threading
import time

from azure_boot.context import BotContext
from azure_boot.services.poller import poll_once


logger = logging.getLogger(__name__)


def start_loops(ctx: BotContext, stop_event: threading.Event) -> list[threading.Thread]:
    interval = ctx.settings.poll_interval_sec

    def poll_worker() -> None:
        while not stop_event.is_set():
            try:
                poll_once(ctx)
            except Exception as exc:  # noqa: BLE001
                logger.exception("poll tick failed: %s", exc)
            stop_event.wait(interval)

    thread = threading.Thread(target=poll_worker, name="power-poller", daemon=True)
    thread.start()
    time.sleep(0.01)
    logger.info("polling pending requests every %ss", interval)
    return [thread]
