"""Settings loader for SubsAI built on pydantic-settings."""

from __future__ import annotations

from pathlib import Path
from typing import Any, List, Literal, Sequence

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import TranslationProviderConfigurationError

HOME_ENV_FILE = Path.home() / ".subs-ai"


class SubsAIConfig(BaseSettings):
    """Schema describing all supported configuration options."""

    LLM_PROVIDER: Literal["azure_openai", "openai", "echo"] = Field(
        default="openai",
        description="Large language model provider selection.",
    )
    OPENAI_API_KEY: str | None = Field(default=None, repr=False)
    AZURE_OPENAI_API_KEY: str | None = Field(default=None, repr=False)
    AZURE_OPENAI_ENDPOINT: str | None = None
    AZURE_OPENAI_API_VERSION: str | None = None
    AZURE_OPENAI_DEPLOYMENT_NAME: str | None = None

    AI_MODEL: str = "gpt-4o-mini"
    TARGET_LANGUAGE: str = Field(..., min_length=1)
    TARGET_LANGUAGE_ALIAS: str = ""
    EXTRA_SPECIFICATION: str = ""
    TEMPERATURE: float = Field(default=0.3, ge=0, le=2)

    MAX_TOKENS: int = Field(default=1000, gt=0)
    MAX_TRIES: int = Field(default=5, ge=0)
    ERROR_THRESHOLD: int = Field(default=3, ge=0)
    CONCURRENCY: int = Field(default=10, gt=0)
    POLL_INTERVAL: float = Field(default=30.0, gt=0)

    CACHE_PATH: Path = Path("cache.json")
    ERROR_CORPUS_PATH: Path = Path("most-errored.jsonl")

    model_config = SettingsConfigDict(
        env_file=(HOME_ENV_FILE, ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="before")
    @classmethod
    def _normalise_provider(cls, data: Any) -> Any:
        if isinstance(data, dict):
            raw_value = data.get("LLM_PROVIDER")
            if isinstance(raw_value, str):
                normalized = raw_value.strip().lower().replace("-", "_")
                synonyms = {
                    "azure_open_ai": "azure_openai",
                    "azureopenai": "azure_openai",
                    "mock": "echo",
                    "noop": "echo",
                }
                data["LLM_PROVIDER"] = synonyms.get(normalized, normalized)
        return data

    @property
    def language_aliases(self) -> List[str]:
        """Suffixes recognised as an existing translation, primary first."""

        aliases = [
            alias.strip()
            for alias in self.TARGET_LANGUAGE_ALIAS.split(",")
            if alias.strip()
        ]
        return aliases or [self.TARGET_LANGUAGE]


def _format_validation_errors(entries: Sequence[Any]) -> str:
    details: list[str] = []
    for entry in entries:
        path = entry.get("loc") or []
        if isinstance(path, (list, tuple)):
            location = ".".join(str(part) for part in path if part not in {None, ""})
        else:
            location = str(path)
        message = str(entry.get("msg") or "Invalid value")
        prefix = f"{location}: " if location else ""
        details.append(f"- {prefix}{message}")
    return "Configuration validation errors detected:\n" + "\n".join(details)


def load_settings(**overrides: Any) -> SubsAIConfig:
    """Build and validate settings, letting explicit overrides win.

    Provider credentials are checked when the provider is built.
    """

    try:
        settings = SubsAIConfig(**overrides)
    except ValidationError as exc:
        raise TranslationProviderConfigurationError(
            _format_validation_errors(exc.errors())
        ) from exc
    return settings
