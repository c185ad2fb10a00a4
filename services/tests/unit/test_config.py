"""Tests for service configuration loading."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest
from pydantic import ValidationError


def _load_service_settings():
    from novelsmith.services.config import ServiceSettings

    return ServiceSettings


def test_from_environment_supports_export_and_quotes(tmp_path, monkeypatch):
    """Ensure `.env` parsing honours export prefixes and quoted values."""

    env_content = textwrap.dedent(
        """
        # comment line
          export NOVELSMITH_JOB_TIMEOUT_SECONDS="600"
        NOVELSMITH_CHAPTER_MAX_ATTEMPTS='3'
        not a setting
        """
    ).strip()
    (tmp_path / ".env").write_text(env_content, encoding="utf-8")

    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("NOVELSMITH_JOB_TIMEOUT_SECONDS", raising=False)
    monkeypatch.delenv("NOVELSMITH_CHAPTER_MAX_ATTEMPTS", raising=False)

    settings = _load_service_settings().from_environment()

    assert settings.job_timeout_seconds == 600
    assert settings.chapter_max_attempts == 3


def test_environment_overrides_env_file(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("NOVELSMITH_STREAM_QUEUE_SIZE=8\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("NOVELSMITH_STREAM_QUEUE_SIZE", "32")

    settings = _load_service_settings().from_environment()

    assert settings.stream_queue_size == 32


def test_defaults_match_documented_budgets(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in _load_service_settings().model_fields:
        monkeypatch.delenv(f"NOVELSMITH_{name.upper()}", raising=False)

    settings = _load_service_settings().from_environment()

    assert settings.job_timeout_seconds == 45 * 60
    assert settings.job_retention_seconds == 60 * 60
    assert settings.completion_max_attempts == 3
    assert settings.chapter_max_attempts == 2
    assert settings.stall_timeout_seconds == 300


def test_invalid_values_raise_validation_error(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("NOVELSMITH_COMPLETION_MAX_ATTEMPTS", "0")

    with pytest.raises(ValidationError):
        _load_service_settings().from_environment()


def test_backoff_cap_must_cover_base_delay():
    with pytest.raises(ValidationError):
        _load_service_settings()(completion_backoff_seconds=5.0, completion_backoff_max_seconds=1.0)


def test_stall_timeout_must_exceed_heartbeat():
    with pytest.raises(ValidationError):
        _load_service_settings()(heartbeat_interval_seconds=30.0, stall_timeout_seconds=30.0)


def test_endpoint_settings_accept_openai_aliases(monkeypatch):
    from novelsmith.services.settings import Settings

    monkeypatch.delenv("NOVELSMITH_OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("NOVELSMITH_COMPLETION_BASE_URL", raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-from-env")
    monkeypatch.setenv("OPENAI_BASE_URL", "http://localhost:11434/v1/")

    settings = Settings(_env_file=None)

    assert settings.openai_api_key == "sk-from-env"
    assert settings.completion_base_url == "http://localhost:11434/v1"
    assert settings.is_configured


def test_endpoint_settings_unconfigured_without_key(monkeypatch):
    from novelsmith.services.settings import Settings

    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("NOVELSMITH_OPENAI_API_KEY", raising=False)

    settings = Settings(_env_file=None)

    assert not settings.is_configured


def test_env_example_documents_service_settings():
    """The example env file should document every ServiceSettings field."""

    settings_cls = _load_service_settings()
    repo_root = Path(__file__).resolve().parents[3]
    env_example = repo_root / ".env.example"

    assert env_example.exists(), ".env.example is missing from the repository root"

    documented_keys: set[str] = set()
    for raw_line in env_example.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _ = line.split("=", 1)
        documented_keys.add(key.strip())

    env_prefix = str(settings_cls.model_config.get("env_prefix", ""))
    expected_keys = {f"{env_prefix}{field_name.upper()}" for field_name in settings_cls.model_fields}

    missing = expected_keys - documented_keys
    assert not missing, f"Update .env.example to include: {sorted(missing)}"
