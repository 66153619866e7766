import json
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from azure_boot.config import VMConfig
from azure_boot.control_message import (
    ChannelLocation,
    ControlMessageRef,
    ref_from_json,
    ref_key,
    ref_to_json,
)
from azure_boot.models import (
    PENDING_BOOT_STAGES,
    PENDING_POWER_STAGES,
    BootRequestRecord,
    BootStage,
    Event,
    PowerRequestRecord,
    PowerStage,
)
from azure_boot.power_states import PowerState, parse_power_state
from azure_boot.stages import (
    TERMINAL_POWER_STAGES,
    BootFailed,
    Booting,
    BootRequested,
    BootStageVariant,
    BootSucceeded,
    Failed,
    InProgress,
    PowerStageVariant,
    Requested,
    Running,
    ShuttingDown,
    Succeeded,
)


def now_utc() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def write_event(
    session: Session, event_type: str, payload: dict, subject_id: str | None = None
) -> None:
    session.add(
        Event(
            subject_id=subject_id,
            event_type=event_type,
            payload_json=json.dumps(payload, sort_keys=True, default=str),
        )
    )


@dataclass
class PowerRequestData:
    request_id: str
    control_message: ControlMessageRef
    vm: VMConfig
    target_power: PowerState
    stage: PowerStageVariant = field(default_factory=Requested)
    flip_flop: bool = True


@dataclass
class BootRequestData:
    boot_request_id: str
    vm: VMConfig
    follow_up: ChannelLocation
    stage: BootStageVariant = field(default_factory=BootRequested)


def _vm_from_row(row: PowerRequestRecord | BootRequestRecord) -> VMConfig:
    return VMConfig(
        resource_group=row.vm_resource_group,
        azure_name=row.vm_azure_name,
        friendly_name=row.vm_friendly_name,
    )


def _power_stage_from_row(row: PowerRequestRecord) -> PowerStageVariant:
    start_power = parse_power_state(row.start_power)
    if row.stage == PowerStage.REQUESTED.value:
        return Requested()
    if row.stage == PowerStage.IN_PROGRESS.value:
        return InProgress(
            started_at=row.started_at, start_power=start_power, action_at=row.action_at
        )
    if row.stage == PowerStage.SUCCESS.value:
        return Succeeded(
            started_at=row.started_at,
            start_power=start_power,
            finished_at=row.finished_at,
        )
    if row.stage == PowerStage.ERROR.value:
        return Failed(
            failed_at=row.finished_at,
            internal=row.error_internal or "",
            user=row.error_user or "",
        )
    raise ValueError(f"unknown power request stage {row.stage!r}")


def power_request_from_row(row: PowerRequestRecord) -> PowerRequestData:
    return PowerRequestData(
        request_id=row.request_id,
        control_message=ref_from_json(row.control_message_json),
        vm=_vm_from_row(row),
        target_power=PowerState(row.target_power),
        stage=_power_stage_from_row(row),
        flip_flop=row.flip_flop,
    )


def _apply_power_request(row: PowerRequestRecord, data: PowerRequestData) -> None:
    stage = data.stage
    row.control_message_key = ref_key(data.control_message)
    row.control_message_json = ref_to_json(data.control_message)
    row.vm_friendly_name = data.vm.friendly_name
    row.vm_resource_group = data.vm.resource_group
    row.vm_azure_name = data.vm.azure_name
    row.target_power = data.target_power.value
    row.flip_flop = data.flip_flop
    row.stage = stage.name
    row.active_vm = (
        None if isinstance(stage, TERMINAL_POWER_STAGES) else data.vm.friendly_name
    )

    row.started_at = None
    row.start_power = None
    row.action_at = None
    row.finished_at = None
    row.error_internal = None
    row.error_user = None
    if isinstance(stage, (InProgress, Succeeded)):
        row.started_at = stage.started_at
        row.start_power = stage.start_power.value if stage.start_power else None
    if isinstance(stage, InProgress):
        row.action_at = stage.action_at
    if isinstance(stage, Succeeded):
        row.finished_at = stage.finished_at
    if isinstance(stage, Failed):
        row.finished_at = stage.failed_at
        row.error_internal = stage.internal
        row.error_user = stage.user
    row.updated_at = now_utc()


def get_power_request(session: Session, request_id: str) -> PowerRequestData | None:
    row = session.get(PowerRequestRecord, request_id)
    if row is None:
        return None
    return power_request_from_row(row)


def insert_power_request(session: Session, data: PowerRequestData) -> None:
    row = PowerRequestRecord(request_id=data.request_id)
    _apply_power_request(row, data)
    session.add(row)
    session.flush()


def upsert_power_request(session: Session, data: PowerRequestData) -> None:
    row = session.get(PowerRequestRecord, data.request_id)
    if row is None:
        row = PowerRequestRecord(request_id=data.request_id)
        session.add(row)
    _apply_power_request(row, data)


def count_active_power_requests(session: Session, friendly_name: str) -> int:
    query = (
        select(func.count())
        .select_from(PowerRequestRecord)
        .where(PowerRequestRecord.vm_friendly_name == friendly_name)
        .where(PowerRequestRecord.stage.in_(PENDING_POWER_STAGES))
    )
    return session.scalar(query) or 0


def list_pending_power_request_ids(session: Session) -> list[str]:
    query = (
        select(PowerRequestRecord.request_id)
        .where(PowerRequestRecord.stage.in_(PENDING_POWER_STAGES))
        .order_by(PowerRequestRecord.created_at.asc())
    )
    return list(session.scalars(query))


def recent_durations(
    session: Session,
    vm: VMConfig,
    start_power: PowerState | None,
    target_power: PowerState,
    limit: int = 10,
) -> list[timedelta]:
    query = select(PowerRequestRecord.started_at, PowerRequestRecord.finished_at).where(
        PowerRequestRecord.vm_friendly_name == vm.friendly_name,
        PowerRequestRecord.vm_resource_group == vm.resource_group,
        PowerRequestRecord.vm_azure_name == vm.azure_name,
        PowerRequestRecord.stage == PowerStage.SUCCESS.value,
        PowerRequestRecord.target_power == target_power.value,
    )
    if start_power is None:
        query = query.where(PowerRequestRecord.start_power.is_(None))
    else:
        query = query.where(PowerRequestRecord.start_power == start_power.value)
    query = query.order_by(PowerRequestRecord.finished_at.desc()).limit(limit)
    return [
        finished_at - started_at
        for started_at, finished_at in session.execute(query)
        if started_at is not None and finished_at is not None
    ]


def list_power_requests(
    session: Session, vm: str | None = None, stage: str | None = None
) -> list[PowerRequestRecord]:
    query = select(PowerRequestRecord)
    if vm:
        query = query.where(PowerRequestRecord.vm_friendly_name == vm)
    if stage:
        query = query.where(PowerRequestRecord.stage == stage)
    return list(session.scalars(query.order_by(PowerRequestRecord.created_at.desc())))


def _boot_stage_from_row(row: BootRequestRecord) -> BootStageVariant:
    if row.stage == BootStage.REQUESTED.value:
        return BootRequested()
    if row.stage == BootStage.BOOTING.value:
        return Booting(power_request_id=row.power_request_id)
    if row.stage == BootStage.RUNNING.value:
        warning = (
            ref_from_json(row.warning_message_json) if row.warning_message_json else None
        )
        return Running(expire_at=row.expire_at, warning_message=warning)
    if row.stage == BootStage.SHUTTING_DOWN.value:
        return ShuttingDown(power_request_id=row.power_request_id)
    if row.stage == BootStage.SUCCESS.value:
        return BootSucceeded(finished_at=row.finished_at)
    if row.stage == BootStage.ERROR.value:
        return BootFailed(failed_at=row.finished_at, reason=row.error_reason or "")
    raise ValueError(f"unknown boot request stage {row.stage!r}")


def boot_request_from_row(row: BootRequestRecord) -> BootRequestData:
    return BootRequestData(
        boot_request_id=row.boot_request_id,
        vm=_vm_from_row(row),
        follow_up=ChannelLocation(
            guild_id=row.follow_up_guild_id, channel_id=row.follow_up_channel_id
        ),
        stage=_boot_stage_from_row(row),
    )


def _apply_boot_request(row: BootRequestRecord, data: BootRequestData) -> None:
    stage = data.stage
    row.vm_friendly_name = data.vm.friendly_name
    row.vm_resource_group = data.vm.resource_group
    row.vm_azure_name = data.vm.azure_name
    row.follow_up_guild_id = data.follow_up.guild_id
    row.follow_up_channel_id = data.follow_up.channel_id
    row.stage = stage.name

    row.power_request_id = None
    row.expire_at = None
    row.warning_message_json = None
    row.finished_at = None
    row.error_reason = None
    if isinstance(stage, (Booting, ShuttingDown)):
        row.power_request_id = stage.power_request_id
    if isinstance(stage, Running):
        row.expire_at = stage.expire_at
        if stage.warning_message is not None:
            row.warning_message_json = ref_to_json(stage.warning_message)
    if isinstance(stage, BootSucceeded):
        row.finished_at = stage.finished_at
    if isinstance(stage, BootFailed):
        row.finished_at = stage.failed_at
        row.error_reason = stage.reason
    row.updated_at = now_utc()


def get_boot_request(session: Session, boot_request_id: str) -> BootRequestData | None:
    row = session.get(BootRequestRecord, boot_request_id)
    if row is None:
        return None
    return boot_request_from_row(row)


def upsert_boot_request(session: Session, data: BootRequestData) -> None:
    row = session.get(BootRequestRecord, data.boot_request_id)
    if row is None:
        row = BootRequestRecord(boot_request_id=data.boot_request_id)
        session.add(row)
    _apply_boot_request(row, data)


def count_active_boot_requests(session: Session, friendly_name: str) -> int:
    query = (
        select(func.count())
        .select_from(BootRequestRecord)
        .where(BootRequestRecord.vm_friendly_name == friendly_name)
        .where(BootRequestRecord.stage.in_(PENDING_BOOT_STAGES))
    )
    return session.scalar(query) or 0


def list_pending_boot_request_ids(session: Session) -> list[str]:
    query = (
        select(BootRequestRecord.boot_request_id)
        .where(BootRequestRecord.stage.in_(PENDING_BOOT_STAGES))
        .order_by(BootRequestRecord.created_at.asc())
    )
    return list(session.scalars(query))


def list_boot_requests(
    session: Session, vm: str | None = None, stage: str | None = None
) -> list[BootRequestRecord]:
    query = select(BootRequestRecord)
    if vm:
        query = query.where(BootRequestRecord.vm_friendly_name == vm)
    if stage:
        query = query.where(BootRequestRecord.stage == stage)
    return list(session.scalars(query.order_by(BootRequestRecord.created_at.desc())))
