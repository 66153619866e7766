from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from azure_boot.db import Base


class PowerStage(str, Enum):
    REQUESTED = "requested"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    ERROR = "error"


class BootStage(str, Enum):
    REQUESTED = "requested"
    BOOTING = "booting"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    SUCCESS = "success"
    ERROR = "error"


PENDING_POWER_STAGES = (PowerStage.REQUESTED.value, PowerStage.IN_PROGRESS.value)
PENDING_BOOT_STAGES = (
    BootStage.REQUESTED.value,
    BootStage.BOOTING.value,
    BootStage.RUNNING.value,
    BootStage.SHUTTING_DOWN.value,
)


class PowerRequestRecord(Base):
    __tablename__ = "power_requests"
    __table_args__ = (
        UniqueConstraint("control_message_key", name="uq_power_requests_ctrl_msg"),
        # NULL once terminal, so only one non-terminal row per vm.
        UniqueConstraint("active_vm", name="uq_power_requests_active_vm"),
    )

    request_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    control_message_key: Mapped[str] = mapped_column(String(256), nullable=False)
    control_message_json: Mapped[str] = mapped_column(Text, nullable=False)

    vm_friendly_name: Mapped[str] = mapped_column(String(128), nullable=False)
    vm_resource_group: Mapped[str] = mapped_column(String(128), nullable=False)
    vm_azure_name: Mapped[str] = mapped_column(String(128), nullable=False)
    active_vm: Mapped[str | None] = mapped_column(String(128))

    target_power: Mapped[str] = mapped_column(String(64), nullable=False)
    stage: Mapped[str] = mapped_column(
        String(32), default=PowerStage.REQUESTED.value, nullable=False
    )
    flip_flop: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    started_at: Mapped[datetime | None] = mapped_column(DateTime)
    start_power: Mapped[str | None] = mapped_column(String(64))
    action_at: Mapped[datetime | None] = mapped_column(DateTime)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime)
    error_internal: Mapped[str | None] = mapped_column(Text)
    error_user: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class BootRequestRecord(Base):
    __tablename__ = "boot_requests"

    boot_request_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    vm_friendly_name: Mapped[str] = mapped_column(String(128), nullable=False)
    vm_resource_group: Mapped[str] = mapped_column(String(128), nullable=False)
    vm_azure_name: Mapped[str] = mapped_column(String(128), nullable=False)

    follow_up_guild_id: Mapped[str] = mapped_column(String(32), nullable=False)
    follow_up_channel_id: Mapped[str] = mapped_column(String(32), nullable=False)

    stage: Mapped[str] = mapped_column(
        String(32), default=BootStage.REQUESTED.value, nullable=False
    )
    power_request_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("power_requests.request_id")
    )
    expire_at: Mapped[datetime | None] = mapped_column(DateTime)
    warning_message_json: Mapped[str | None] = mapped_column(Text)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime)
    error_reason: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    subject_id: Mapped[str | None] = mapped_column(String(64))
    event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
