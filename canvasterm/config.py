"""
Configuration: where the LMS lives and which token to use.

Uses Pydantic Settings. Resolution order, per field:
1. ~/.canvasterm/config.toml (canvas_url, api_token)
2. CANVAS_URL / CANVAS_API_TOKEN environment variables

CANVASTERM_HOME moves the whole ~/.canvasterm directory (config, cache, log).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)


class ConfigError(Exception):
    """Raised when no usable URL/token pair can be found."""


_ENV_NAMES = {"canvas_url": "CANVAS_URL", "api_token": "CANVAS_API_TOKEN"}


class Config(BaseSettings):
    """LMS connection settings."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    canvas_url: str = Field(
        validation_alias=AliasChoices("canvas_url", "CANVAS_URL"),
        description="Base URL of the Canvas instance",
    )
    api_token: str = Field(
        validation_alias=AliasChoices("api_token", "CANVAS_API_TOKEN"),
        description="Personal access token",
    )

    @field_validator("canvas_url", "api_token", mode="before")
    @classmethod
    def _not_blank(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("canvas_url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"must start with http:// or https://, got {value!r}")
        return value

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # config.toml values arrive as init kwargs, so they beat the environment.
        return (init_settings, env_settings)


DEFAULT_TEMPLATE = """\
# canvasterm configuration
canvas_url = "https://your-school.instructure.com"
api_token = "your-api-token-here"
"""


def home_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if environ is None else environ
    override = (env.get("CANVASTERM_HOME") or "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".canvasterm"


def default_config_path(environ: Optional[Mapping[str, str]] = None) -> Path:
    return home_dir(environ) / "config.toml"


def _describe(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        field = str(error["loc"][0]).lower() if error.get("loc") else ""
        name = _ENV_NAMES.get(field, field.upper())
        if error["type"] == "missing":
            problems.append(f"{name} not set")
        else:
            problems.append(f"{name}: {error['msg']}")
    return "; ".join(problems) + ". Run `canvasterm init` or set the env var."


def load_config(path: str | Path | None = None) -> Config:
    """
    Load the configuration from file, falling back to environment variables.

    Raises ConfigError with a hint when the sources together are incomplete
    or invalid.
    """
    config_path = Path(path) if path is not None else default_config_path()

    file_values: dict[str, Any] = {}
    if config_path.exists():
        try:
            file_values = dict(TomlConfigSettingsSource(Config, toml_file=config_path)())
        except (OSError, ValueError) as exc:
            raise ConfigError(f"Failed to read config at {config_path}: {exc}") from exc

    try:
        return Config(**file_values)
    except ValidationError as exc:
        raise ConfigError(_describe(exc)) from exc


def write_default_config(path: str | Path | None = None) -> Path:
    """
    Write a config template and return its path.

    Creates parent directories if needed.
    """
    config_path = Path(path) if path is not None else default_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(DEFAULT_TEMPLATE, encoding="utf-8")
    return config_path
