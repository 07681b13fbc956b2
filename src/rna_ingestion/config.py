# rna_ingestion/config.py
"""
Runtime settings for the ingestion pipeline.

Precedence: environment (``RNA_INGESTION_``) > TOML file (``[ingestion]``) > defaults.
"""
from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from rna_ingestion.contracts import CommitMode, CommitPolicy

DEFAULT_CONFIG_FILE: Final[str] = "rna_ingestion.toml"
ENV_PREFIX: Final[str] = "RNA_INGESTION_"
TOML_TABLE: Final[str] = "ingestion"

DEFAULT_PIPELINE_NAME: Final[str] = "DEFAULT_INGESTION_PIPELINE"


class ConfigLoadError(ValueError):
    """Raised when settings cannot be loaded or fail validation."""


class PipelineSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    pipeline_name: str = Field(default=DEFAULT_PIPELINE_NAME, min_length=1)
    default_allowed_modes: tuple[CommitMode, ...] = (CommitMode.FULL,)
    outbox_max_attempts: int = Field(default=3, ge=1)
    log_level: str = "INFO"

    @field_validator("default_allowed_modes")
    @classmethod
    def _validate_modes(cls, value: tuple[CommitMode, ...]) -> tuple[CommitMode, ...]:
        if value not in {(CommitMode.FULL,), (CommitMode.FULL, CommitMode.PARTIAL)}:
            raise ValueError("default_allowed_modes must be FULL or FULL,PARTIAL")
        return value

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level: {value!r}")
        return level

    def default_commit_policy(self) -> CommitPolicy:
        return CommitPolicy(allowed_modes=self.default_allowed_modes)


def load_settings(
    path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> PipelineSettings:
    """Load effective settings. An explicit ``path`` must exist; the default file is optional."""
    resolved = Path.cwd() / DEFAULT_CONFIG_FILE if path is None else Path(path).expanduser()
    env_map = os.environ if environ is None else environ

    payload: dict[str, Any] = {}
    payload.update(_load_toml_table(resolved, required=path is not None))
    payload.update(_collect_env_overrides(env_map))

    try:
        return PipelineSettings.model_validate(payload)
    except ValidationError as exc:
        raise ConfigLoadError(f"invalid ingestion settings: {exc}") from exc


def _load_toml_table(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}

    try:
        with path.open("rb") as handle:
            parsed = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc

    table = parsed.get(TOML_TABLE, {})
    if not isinstance(table, dict):
        raise ConfigLoadError(f"[{TOML_TABLE}] must be a table: {path}")
    return dict(table)


def _collect_env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for name in PipelineSettings.model_fields:
        raw = environ.get(ENV_PREFIX + name.upper())
        if raw is None:
            continue
        value = raw.strip()
        if name == "default_allowed_modes":
            overrides[name] = [part.strip().upper() for part in value.split(",") if part.strip()]
        else:
            overrides[name] = value
    return overrides


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "PipelineSettings",
    "load_settings",
]
