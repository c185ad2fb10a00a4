"""Pydantic settings for the external completion endpoint."""

from __future__ import annotations

from functools import lru_cache
from typing import ClassVar, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BASE_URL = "https://api.openai.com/v1"


class Settings(BaseSettings):
    """Credentials and model selection for the completion endpoint."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    openai_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "NOVELSMITH_OPENAI_API_KEY",
            "OPENAI_API_KEY",
        ),
    )
    completion_base_url: str = Field(
        default=DEFAULT_BASE_URL,
        validation_alias=AliasChoices(
            "NOVELSMITH_COMPLETION_BASE_URL",
            "OPENAI_BASE_URL",
        ),
    )
    outline_model: str = Field(
        default="gpt-4o",
        validation_alias=AliasChoices("NOVELSMITH_OUTLINE_MODEL", "OUTLINE_MODEL"),
    )
    chapter_model: str = Field(
        default="gpt-4o",
        validation_alias=AliasChoices("NOVELSMITH_CHAPTER_MODEL", "CHAPTER_MODEL"),
    )
    request_timeout_seconds: float = Field(
        default=120.0,
        validation_alias=AliasChoices(
            "NOVELSMITH_REQUEST_TIMEOUT_SECONDS",
            "REQUEST_TIMEOUT_SECONDS",
        ),
    )

    @field_validator("completion_base_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value

    @property
    def is_configured(self) -> bool:
        return bool(self.openai_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()


__all__ = ["Settings", "get_settings"]
