"""Configuration settings for aci_imagegen.

Uses pydantic-settings for config parsing from environment variables,
an optional YAML config file and defaults. Configuration precedence:
CLI flags > env vars > config file > defaults.
"""

import os
import pwd
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

CONFIG_FILE_NAME = "config.yml"


def _user_home() -> Path:
    """Return the home of the invoking user, even when run through sudo."""
    sudo_user = os.environ.get("SUDO_USER")
    if sudo_user:
        try:
            return Path(pwd.getpwnam(sudo_user).pw_dir)
        except KeyError:
            pass
    return Path.home()


def default_config_dir() -> Path:
    """Return the directory holding the YAML config file."""
    override = os.environ.get("ACIGEN_CONFIG_DIR")
    if override:
        return Path(override)
    return _user_home() / ".config" / "acigen"


class PushSettings(BaseModel):
    """Destination for pushed images."""

    url: str | None = Field(default=None, description="Base URL of the image store")
    username: str | None = Field(default=None)
    password: str | None = Field(default=None)


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the ACIGEN_ prefix
    and from ``config.yml`` in the config directory. CLI flags can override
    these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="ACIGEN_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Paths
    target_work_dir: Path | None = Field(
        default=None,
        description="Redirect build targets to <dir>/<image short name>",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Runtime
    rkt_path: str = Field(default="rkt", description="Path to the rkt binary")
    rkt_global_options: list[str] = Field(
        default_factory=list,
        description="Options passed to every rkt invocation",
    )
    default_builder_image: str = Field(
        default="aci.blablacar.com/dgr/aci-builder",
        description="Builder image used when the manifest does not declare one",
    )
    default_tester_image: str = Field(
        default="aci.blablacar.com/dgr/aci-tester",
        description="Tester builder image used when the manifest does not declare one",
    )

    # Compression
    compression_threads: int = Field(
        default=10,
        ge=1,
        le=256,
        description="Worker threads for parallel gzip",
    )
    compression_block_size: int = Field(
        default=1024 * 1024,
        ge=64 * 1024,
        description="Block size in bytes for parallel gzip",
    )

    # Version discovery
    discovery_timeout: int = Field(
        default=10,
        ge=1,
        description="Timeout in seconds for latest-version discovery",
    )

    # Signing
    gpg_path: str = Field(default="gpg", description="Path to the gpg binary")
    signing_key: str | None = Field(default=None, description="gpg --local-user")
    signing_keyring: Path | None = Field(default=None, description="gpg keyring")

    push: PushSettings = Field(default_factory=PushSettings)

    @model_validator(mode="before")
    @classmethod
    def accept_camel_case_work_dir(cls, data: Any) -> Any:
        """Accept the ``targetWorkDir`` key written by dgr config files."""
        if isinstance(data, dict) and "targetWorkDir" in data:
            data = dict(data)
            legacy = data.pop("targetWorkDir")
            data.setdefault("target_work_dir", legacy)
        return data

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        yaml_settings = YamlConfigSettingsSource(
            settings_cls,
            yaml_file=default_config_dir() / CONFIG_FILE_NAME,
        )
        return (init_settings, env_settings, yaml_settings, file_secret_settings)


def get_settings() -> Settings:
    """Load the application settings.

    The CLI calls this once per process and passes the instance down.

    Returns:
        Settings instance loaded from environment and config file.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2, exclude={"push": {"password"}})


__all__ = [
    "PushSettings",
    "Settings",
    "default_config_dir",
    "get_settings",
    "print_settings_json",
]
