"""Hub server configuration via environment variables."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import field_validator
from pydantic_settings import BaseSettings

from shared.validators import StringListEnvSettingsSource, parse_string_list

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource


class HubSettings(BaseSettings):
    model_config = {"env_prefix": "HUB_"}

    database_path: str = "backend/data/hub.sqlite3"
    log_dir: str = "backend/logs/hub"
    cors_origins: list[str] = []
    admin_codes: list[str] = []
    audit_log_default_limit: int = 100
    audit_log_max_limit: int = 1000

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_string_list(v, allow_empty=True)

    @field_validator("admin_codes", mode="before")
    @classmethod
    def validate_admin_codes(cls, v: str | list[str]) -> list[str]:
        return parse_string_list(v, allow_empty=True)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, StringListEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings)
