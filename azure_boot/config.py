from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from azure_boot.errors import UnknownVMError


class VMConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource_group: str
    azure_name: str
    # Shown to users and used as the command choice, must be unique.
    friendly_name: str


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    azure_subscription_id: str = Field(default="")
    azure_tenant_id: str = Field(default="")
    azure_client_id: str = Field(default="")
    azure_client_secret: str = Field(default="")

    database_url: str = Field(default="sqlite:///./azure_boot.db")

    discord_api_url: str = Field(default="https://discord.com/api/v10")
    discord_application_id: str = Field(default="")
    discord_bot_token: str = Field(default="")
    discord_public_key: str = Field(default="")
    discord_guild_id: str | None = Field(default=None)
    discord_permission_role_id: str | None = Field(default=None)

    vms: list[VMConfig] = Field(default_factory=list)

    poll_interval_sec: int = Field(default=5, ge=1)
    action_grace_sec: int = Field(default=30, ge=0)
    duration_history_limit: int = Field(default=10, ge=1)
    boot_ttl_sec: int = Field(default=3 * 60 * 60, ge=60)
    boot_warning_sec: int = Field(default=10 * 60, ge=0)

    retry_attempts: int = Field(default=3, ge=1)
    retry_sleep_sec: int = Field(default=1, ge=0)

    log_level: str = Field(default="INFO")
    disable_background_loops: bool = Field(default=False)

    @field_validator("vms")
    @classmethod
    def _unique_friendly_names(cls, vms: list[VMConfig]) -> list[VMConfig]:
        seen: set[str] = set()
        for vm in vms:
            if vm.friendly_name in seen:
                raise ValueError(f"duplicate vm friendly_name {vm.friendly_name!r}")
            seen.add(vm.friendly_name)
        return vms


def vm_by_friendly_name(settings: Settings, name: str) -> VMConfig:
    for vm in settings.vms:
        if vm.friendly_name == name:
            return vm
    raise UnknownVMError(name)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
