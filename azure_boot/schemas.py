from datetime import datetime

from pydantic import BaseModel


class PowerRequestRead(BaseModel):
    request_id: str
    vm: str
    target_power: str
    stage: str
    start_power: str | None
    started_at: datetime | None
    action_at: datetime | None
    finished_at: datetime | None
    error: str | None
    created_at: datetime


class BootRequestRead(BaseModel):
    boot_request_id: str
    vm: str
    stage: str
    power_request_id: str | None
    expire_at: datetime | None
    finished_at: datetime | None
    error: str | None
    created_at: datetime
