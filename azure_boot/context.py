import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.orm import sessionmaker

from azure_boot.clients.azure_compute import ComputeClient
from azure_boot.clients.discord import DiscordClient
from azure_boot.clients.http import RetryPolicy
from azure_boot.config import Settings
from azure_boot.db import SessionLocal, session_scope
from azure_boot.repositories import now_utc


class RequestLocks:
    """Ids of the requests some thread of this process is ticking right now."""

    def __init__(self):
        self._lock = threading.Lock()
        self._held: set[str] = set()

    def acquire(self, request_id: str) -> bool:
        with self._lock:
            if request_id in self._held:
                return False
            self._held.add(request_id)
            return True

    def release(self, request_id: str) -> None:
        with self._lock:
            self._held.discard(request_id)

    @contextmanager
    def hold(self, request_id: str) -> Iterator[bool]:
        """Yield whether the id was free; it is released on exit if so."""

        acquired = self.acquire(request_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(request_id)


@dataclass
class BotContext:
    settings: Settings
    compute: ComputeClient
    discord: DiscordClient
    session_factory: sessionmaker = field(default=SessionLocal)
    clock: Callable[[], datetime] = field(default=now_utc)
    request_locks: RequestLocks = field(default_factory=RequestLocks)

    def session_scope(self):
        return session_scope(self.session_factory)

    def now(self) -> datetime:
        return self.clock()


def build_context(settings: Settings) -> BotContext:
    retry = RetryPolicy(settings.retry_attempts, settings.retry_sleep_sec)
    return BotContext(
        settings=settings,
        compute=ComputeClient.from_settings(settings),
        discord=DiscordClient(
            base_url=settings.discord_api_url,
            application_id=settings.discord_application_id,
            bot_token=settings.discord_bot_token,
            retry=retry,
        ),
    )
