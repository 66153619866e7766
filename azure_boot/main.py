import logging
import threading

from fastapi import FastAPI

from azure_boot.api import router
from azure_boot.config import get_settings
from azure_boot.context import build_context
from azure_boot.db import Base, configure_sqlite_runtime, engine
from azure_boot.logging_config import configure_logging
from azure_boot.loops import start_loops
from azure_boot.startup import initialize_discord, preflight_vms


logger = logging.getLogger(__name__)
stop_event = threading.Event()
loop_threads: list[threading.Thread] = []


app = FastAPI(title="Discord Azure Boot")
app.include_router(router)


@app.on_event("startup")
def startup() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    if not settings.discord_bot_token:
        raise RuntimeError("DISCORD_BOT_TOKEN is required")
    if not settings.discord_public_key:
        raise RuntimeError("DISCORD_PUBLIC_KEY is required")

    configure_sqlite_runtime()
    Base.metadata.create_all(bind=engine)

    ctx = build_context(settings)
    preflight_vms(ctx)
    initialize_discord(ctx)
    app.state.ctx = ctx

    if not settings.disable_background_loops:
        global loop_threads
        loop_threads = start_loops(ctx, stop_event)
    logger.info("azure boot startup complete")


@app.on_event("shutdown")
def shutdown() -> None:
    stop_event.set()
    for thread in loop_threads:
        thread.join(timeout=5)
    ctx = getattr(app.state, "ctx", None)
    if ctx is not None:
        ctx.discord.close()
    engine.dispose()
