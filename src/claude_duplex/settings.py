from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import TomlConfigSettingsSource

from .errors import ConfigError

HOME_CONFIG_PATH = Path.home() / ".claude-duplex" / "config.toml"
CONFIG_PATH_ENV = "CLAUDE_DUPLEX_CONFIG_PATH"

DEFAULT_MAX_BUFFER_SIZE = 1024 * 1024
DEFAULT_CONTROL_TIMEOUT_S = 60.0


class DuplexSettings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="forbid",
        env_prefix="CLAUDE_DUPLEX__",
        str_strip_whitespace=True,
    )

    cli_path: str | None = None
    max_buffer_size: int = Field(default=DEFAULT_MAX_BUFFER_SIZE, ge=1)
    control_timeout_s: float = Field(default=DEFAULT_CONTROL_TIMEOUT_S, gt=0)
    initialize_timeout_s: float = Field(default=DEFAULT_CONTROL_TIMEOUT_S, gt=0)
    skip_version_check: bool = False

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


def load_settings(path: str | Path | None = None) -> DuplexSettings:
    """Load settings from env plus an optional TOML file.

    A missing default config file is fine; an explicit path must exist.
    """
    cfg_path = _resolve_config_path(path)
    if cfg_path.exists() and not cfg_path.is_file():
        raise ConfigError(f"Config path {cfg_path} exists but is not a file.")
    if path and not cfg_path.exists():
        raise ConfigError(f"Missing config file {cfg_path}.")

    cfg = dict(DuplexSettings.model_config)
    if cfg_path.exists():
        cfg["toml_file"] = cfg_path
    Bound = type(
        "DuplexSettingsBound",
        (DuplexSettings,),
        {"model_config": SettingsConfigDict(**cfg)},
    )
    try:
        return Bound()
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {cfg_path}: {exc}") from exc


def _resolve_config_path(path: str | Path | None) -> Path:
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return HOME_CONFIG_PATH
