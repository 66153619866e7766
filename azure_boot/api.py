import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query, Request
from sqlalchemy.orm import Session

from azure_boot.auth import verify_discord_signature
from azure_boot.clients.discord import (
    CALLBACK_CHANNEL_MESSAGE,
    CALLBACK_DEFERRED_CHANNEL_MESSAGE,
    CALLBACK_PONG,
    FLAG_EPHEMERAL,
)
from azure_boot.context import BotContext
from azure_boot.db import SessionLocal
from azure_boot.repositories import list_boot_requests, list_power_requests
from azure_boot.schemas import BootRequestRead, PowerRequestRead
from azure_boot.services.commands import (
    BOOT_COMMAND,
    INTERACTION_APPLICATION_COMMAND,
    INTERACTION_PING,
    PERMISSION_DENIED,
    SHUTDOWN_COMMAND,
    handle_command,
    has_permission,
    parse_invocation,
)


logger = logging.getLogger(__name__)
router = APIRouter()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_context(request: Request) -> BotContext:
    ctx = getattr(request.app.state, "ctx", None)
    if ctx is None:
        raise HTTPException(status_code=503, detail="bot is not initialized")
    return ctx


def _ephemeral(content: str) -> dict:
    return {
        "type": CALLBACK_CHANNEL_MESSAGE,
        "data": {"content": content, "flags": FLAG_EPHEMERAL},
    }


@router.get("/healthz")
def healthz(request: Request) -> dict:
    ready = getattr(request.app.state, "ctx", None) is not None
    return {"status": "ok", "ready": ready}


@router.post("/interactions")
async def interactions(
    request: Request,
    background_tasks: BackgroundTasks,
    x_signature_ed25519: str | None = Header(default=None),
    x_signature_timestamp: str | None = Header(default=None),
) -> dict:
    ctx = get_context(request)
    body = await request.body()
    if not verify_discord_signature(
        ctx.settings.discord_public_key, x_signature_ed25519, x_signature_timestamp, body
    ):
        raise HTTPException(status_code=401, detail="invalid request signature")

    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="invalid json") from exc

    kind = payload.get("type")
    if kind == INTERACTION_PING:
        return {"type": CALLBACK_PONG}
    if kind != INTERACTION_APPLICATION_COMMAND:
        raise HTTPException(status_code=400, detail=f"unsupported interaction type {kind}")

    invocation = parse_invocation(payload)
    if invocation.command_name not in (BOOT_COMMAND, SHUTDOWN_COMMAND):
        logger.warning("received unknown command %r", invocation.command_name)
        return _ephemeral(f"Unknown command {invocation.command_name!r}.")
    if not has_permission(ctx.settings, invocation):
        logger.info(
            "refused %s from a member without the permission role",
            invocation.command_name,
        )
        return _ephemeral(PERMISSION_DENIED)

    logger.info(
        "received %s server=%s interaction=%s",
        invocation.command_name,
        invocation.server,
        invocation.interaction_id,
    )
    background_tasks.add_task(handle_command, ctx, invocation)
    return {"type": CALLBACK_DEFERRED_CHANNEL_MESSAGE}


@router.get("/v1/power-requests", response_model=list[PowerRequestRead])
def get_power_requests(
    vm: str | None = Query(default=None),
    stage: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[PowerRequestRead]:
    rows = list_power_requests(db, vm=vm, stage=stage)
    return [
        PowerRequestRead(
            request_id=r.request_id,
            vm=r.vm_friendly_name,
            target_power=r.target_power,
            stage=r.stage,
            start_power=r.start_power,
            started_at=r.started_at,
            action_at=r.action_at,
            finished_at=r.finished_at,
            error=r.error_internal,
            created_at=r.created_at,
        )
        for r in rows
    ]


@router.get("/v1/boot-requests", response_model=list[BootRequestRead])
def get_boot_requests(
    vm: str | None = Query(default=None),
    stage: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[BootRequestRead]:
    rows = list_boot_requests(db, vm=vm, stage=stage)
    return [
        BootRequestRead(
            boot_request_id=r.boot_request_id,
            vm=r.vm_friendly_name,
            stage=r.stage,
            power_request_id=r.power_request_id,
            expire_at=r.expire_at,
            finished_at=r.finished_at,
            error=r.error_reason,
            created_at=r.created_at,
        )
        for r in rows
    ]
