from __future__ import annotations

from pathlib import Path

import pytest

from rna_ingestion.config import ConfigLoadError, PipelineSettings, load_settings
from rna_ingestion.contracts import CommitMode


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_defaults_without_file_or_env(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)

    settings = load_settings(environ={})

    assert settings == PipelineSettings()
    assert settings.pipeline_name == "DEFAULT_INGESTION_PIPELINE"
    assert settings.default_allowed_modes == (CommitMode.FULL,)
    assert settings.outbox_max_attempts == 3
    assert settings.log_level == "INFO"


def test_default_file_in_cwd_is_picked_up(tmp_path: Path, monkeypatch) -> None:
    _write_config(tmp_path / "rna_ingestion.toml", '[ingestion]\npipeline_name = "FROM_FILE"\n')
    monkeypatch.chdir(tmp_path)

    assert load_settings(environ={}).pipeline_name == "FROM_FILE"


def test_precedence_env_over_file_over_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "custom.toml"
    _write_config(
        config_path,
        """
[ingestion]
pipeline_name = "FROM_FILE"
outbox_max_attempts = 5
default_allowed_modes = ["FULL", "PARTIAL"]
""".strip(),
    )

    settings = load_settings(
        config_path,
        environ={"RNA_INGESTION_OUTBOX_MAX_ATTEMPTS": "7", "RNA_INGESTION_LOG_LEVEL": "debug"},
    )

    assert settings.pipeline_name == "FROM_FILE"
    assert settings.outbox_max_attempts == 7
    assert settings.log_level == "DEBUG"
    assert settings.default_commit_policy().allows_partial is True


def test_env_modes_are_comma_separated(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)

    settings = load_settings(environ={"RNA_INGESTION_DEFAULT_ALLOWED_MODES": "full, partial"})

    assert settings.default_allowed_modes == (CommitMode.FULL, CommitMode.PARTIAL)


def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_settings(tmp_path / "missing.toml", environ={})


def test_invalid_toml_is_an_error(tmp_path: Path) -> None:
    config_path = tmp_path / "broken.toml"
    _write_config(config_path, "[ingestion\n")

    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_settings(config_path, environ={})


@pytest.mark.parametrize(
    "environ",
    [
        {"RNA_INGESTION_OUTBOX_MAX_ATTEMPTS": "zero"},
        {"RNA_INGESTION_OUTBOX_MAX_ATTEMPTS": "0"},
        {"RNA_INGESTION_DEFAULT_ALLOWED_MODES": "PARTIAL"},
        {"RNA_INGESTION_LOG_LEVEL": "LOUD"},
    ],
)
def test_invalid_values_raise_config_load_error(tmp_path: Path, monkeypatch, environ: dict[str, str]) -> None:
    monkeypatch.chdir(tmp_path)

    with pytest.raises(ConfigLoadError):
        load_settings(environ=environ)


def test_unknown_keys_are_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "extra.toml"
    _write_config(config_path, '[ingestion]\nsurprise = 1\n')

    with pytest.raises(ConfigLoadError):
        load_settings(config_path, environ={})
