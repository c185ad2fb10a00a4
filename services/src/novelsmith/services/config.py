"""Service configuration utilities."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, ClassVar, cast

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


class ServiceSettings(BaseModel):
    """Runtime configuration for the generation orchestration services."""

    ENV_PREFIX: ClassVar[str] = "NOVELSMITH_"
    ENV_FILE: ClassVar[str | None] = ".env"
    ENV_FILE_ENCODING: ClassVar[str] = "utf-8"

    model_config: ClassVar[ConfigDict] = cast(
        ConfigDict,
        {
            "extra": "ignore",
            "env_prefix": ENV_PREFIX,
        },
    )

    job_timeout_seconds: float = Field(
        default=45 * 60,
        gt=0,
        description="Wall-clock budget for a whole generation job, measured from job start.",
    )
    job_retention_seconds: float = Field(
        default=60 * 60,
        ge=0,
        description="Seconds a terminal job or closed stream stays queryable before it is swept.",
    )
    retention_sweep_interval_seconds: int = Field(
        default=300,
        ge=1,
        description="Interval in seconds between registry retention sweeps.",
    )
    heartbeat_interval_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Interval between heartbeat events broadcast to stream listeners.",
    )
    stall_timeout_seconds: float = Field(
        default=5 * 60,
        gt=0,
        description="Seconds without a delivered stream event before delivery is considered stalled.",
    )
    inter_chapter_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Pause after each accepted chapter to stay under the endpoint's request-rate ceiling.",
    )
    outline_step_attempts: int = Field(
        default=2,
        ge=1,
        le=5,
        description="Attempts at the outline step inside a job before the job fails.",
    )
    outline_timeout_seconds: float = Field(
        default=180.0,
        gt=0,
        description="Maximum duration of an outline-only request.",
    )
    chapter_max_attempts: int = Field(
        default=2,
        ge=1,
        le=5,
        description="Drafting passes per chapter, including the first draft, before a short chapter is accepted.",
    )
    completion_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per completion request before the gateway gives up.",
    )
    completion_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Hard timeout for a single completion request.",
    )
    completion_backoff_seconds: float = Field(
        default=2.0,
        ge=0.0,
        description="Base delay used by the completion retry backoff strategies.",
    )
    completion_backoff_max_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="Upper bound on any single completion retry delay.",
    )
    max_output_tokens_cap: int = Field(
        default=4000,
        ge=256,
        description="Upper bound on the output-token budget of a chapter request.",
    )
    stream_queue_size: int = Field(
        default=256,
        ge=1,
        description="Buffered events per stream listener before it is treated as failed.",
    )

    @field_validator("completion_backoff_max_seconds")
    @classmethod
    def _validate_backoff_cap(
        cls,
        value: float,
        info: ValidationInfo,
    ) -> float:
        """Ensure the backoff cap is not shorter than the base delay."""

        base = info.data.get("completion_backoff_seconds")
        if base is not None and value < float(base):
            raise ValueError("completion_backoff_max_seconds must be >= completion_backoff_seconds")
        return value

    @field_validator("stall_timeout_seconds")
    @classmethod
    def _validate_stall_timeout(
        cls,
        value: float,
        info: ValidationInfo,
    ) -> float:
        """A stall must outlast at least one heartbeat interval."""

        heartbeat = info.data.get("heartbeat_interval_seconds")
        if heartbeat is not None and value <= float(heartbeat):
            raise ValueError("stall_timeout_seconds must be greater than heartbeat_interval_seconds")
        return value

    @staticmethod
    def _parse_env_file(path: Path, encoding: str) -> dict[str, str]:
        """Parse an environment file supporting `export` and quoted values."""

        parsed: dict[str, str] = {}

        for raw_line in path.read_text(encoding=encoding).splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("export "):
                line = line[len("export ") :].strip()

            if "=" not in line:
                continue

            key, raw_value = line.split("=", 1)
            key = key.strip()
            value = raw_value.strip()

            if value and value[0] == value[-1] and value[0] in {'"', "'"}:
                value = value[1:-1]

            parsed[key] = value

        return parsed

    @classmethod
    def from_environment(cls) -> "ServiceSettings":
        """Load settings from environment variables or a `.env` file."""

        env_prefix = cls.ENV_PREFIX
        env_file_name = cls.ENV_FILE
        env_encoding = cls.ENV_FILE_ENCODING

        file_values: dict[str, str] = {}
        if env_file_name:
            env_file_path = Path(env_file_name)
            if not env_file_path.is_absolute():
                env_file_path = Path.cwd() / env_file_path
            if env_file_path.exists():
                file_values = cls._parse_env_file(env_file_path, env_encoding)

        overrides: dict[str, str] = {}
        for field_name in cls.model_fields:
            env_key = f"{env_prefix}{field_name.upper()}"
            if env_key in os.environ:
                overrides[field_name] = os.environ[env_key]
            elif env_key in file_values:
                overrides[field_name] = file_values[env_key]

        typed_overrides = cast(dict[str, Any], overrides)
        return cls(**typed_overrides)


__all__: list[str] = ["ServiceSettings"]
