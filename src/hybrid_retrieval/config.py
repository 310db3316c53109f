"""
Configuration helpers for the embedding client and the persistent store.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, Field, ValidationError, model_validator

logger = logging.getLogger(__name__)

ProviderName: TypeAlias = Literal["openai", "openrouter", "gemini"]

DEFAULT_STORE_PATH = "~/.hybrid_retrieval/vector_store.json"
DEFAULT_SETTINGS_PATH = "~/.hybrid_retrieval/embedding_settings.json"
ENV_STORE_PATH = "HYBRID_RETRIEVAL_STORE_PATH"
ENV_SETTINGS_PATH = "HYBRID_RETRIEVAL_SETTINGS_PATH"
ENV_AUTOSAVE_INTERVAL = "HYBRID_RETRIEVAL_AUTOSAVE_INTERVAL"
ENV_PROVIDER = "HYBRID_RETRIEVAL_EMBEDDING_PROVIDER"
ENV_MODEL = "HYBRID_RETRIEVAL_EMBEDDING_MODEL"
ENV_DIM = "HYBRID_RETRIEVAL_EMBEDDING_DIM"
ENV_BATCH_SIZE = "HYBRID_RETRIEVAL_EMBEDDING_BATCH_SIZE"
ENV_TIMEOUT = "HYBRID_RETRIEVAL_EMBEDDING_TIMEOUT"
ENV_REQUEST_DIMENSIONS = "EMBEDDING_DIMENSIONS"

CREDENTIAL_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "gemini": "GOOGLE_API_KEY",
}

DEFAULT_MODELS: dict[str, str] = {
    "openai": "text-embedding-ada-002",
    "openrouter": "text-embedding-ada-002",
    "gemini": "gemini-embedding-001",
}

MAX_TIMEOUT_SECONDS = 20.0


class EmbeddingSettings(BaseModel):
    """Provider selection and request limits for an embedding client."""

    provider: ProviderName = "openai"
    api_key: str | None = None
    model_name: str | None = Field(default=None, description="Defaults per provider")
    dimension: int = Field(default=1536, gt=0)
    request_dimensions: int | None = Field(
        default=None,
        gt=0,
        description="Sent as `dimensions` to request cost-reduced embeddings",
    )
    batch_size: int = Field(default=25, gt=0)
    timeout_seconds: float = Field(default=30.0, gt=0)

    @model_validator(mode="after")
    def _default_model(self) -> EmbeddingSettings:
        if self.model_name is None:
            self.model_name = DEFAULT_MODELS[self.provider]
        return self

    @property
    def effective_timeout(self) -> float:
        return min(self.timeout_seconds, MAX_TIMEOUT_SECONDS)

    @property
    def credential_env_var(self) -> str:
        return CREDENTIAL_ENV_VARS[self.provider]

    @classmethod
    def from_env(cls, **overrides: Any) -> EmbeddingSettings:
        """
        Build settings from explicit overrides, environment variables and defaults.

        Precedence:
        1) non-None keyword overrides
        2) HYBRID_RETRIEVAL_EMBEDDING_* / EMBEDDING_DIMENSIONS / provider API key
        3) model defaults
        """
        values: dict[str, Any] = {}
        env_map = {
            "provider": ENV_PROVIDER,
            "model_name": ENV_MODEL,
            "dimension": ENV_DIM,
            "batch_size": ENV_BATCH_SIZE,
            "timeout_seconds": ENV_TIMEOUT,
            "request_dimensions": ENV_REQUEST_DIMENSIONS,
        }
        for field, env_var in env_map.items():
            raw = os.getenv(env_var)
            if raw:
                values[field] = raw
        values.update({key: value for key, value in overrides.items() if value is not None})

        settings = cls.model_validate(values)
        if settings.api_key is None:
            env_key = os.getenv(settings.credential_env_var)
            if env_key:
                settings = settings.model_copy(update={"api_key": env_key})
        return settings


class StoreSettings(BaseModel):
    """Location and housekeeping policy of a persistent store."""

    storage_path: str
    dimension: int = Field(gt=0)
    auto_save_interval_seconds: float = Field(default=300.0, ge=0)
    backup_count: int = Field(default=3, ge=0)
    lock_timeout_seconds: float | None = Field(default=None, gt=0)

    @classmethod
    def from_env(
        cls,
        *,
        dimension: int,
        storage_path: str | None = None,
        **overrides: Any,
    ) -> StoreSettings:
        values: dict[str, Any] = {
            "dimension": dimension,
            "storage_path": resolve_store_path(storage_path),
        }
        interval = os.getenv(ENV_AUTOSAVE_INTERVAL)
        if interval:
            values["auto_save_interval_seconds"] = interval
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls.model_validate(values)


def resolve_store_path(override_path: str | None = None) -> str:
    """
    Resolve the snapshot path from an explicit override, env var, or default.

    Precedence:
    1) explicit override_path
    2) HYBRID_RETRIEVAL_STORE_PATH
    3) default path
    """
    raw_path = override_path or os.getenv(ENV_STORE_PATH) or DEFAULT_STORE_PATH
    resolved = Path(raw_path).expanduser().resolve()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return str(resolved)


def resolve_settings_path(override_path: str | None = None) -> Path:
    raw_path = override_path or os.getenv(ENV_SETTINGS_PATH) or DEFAULT_SETTINGS_PATH
    return Path(raw_path).expanduser().resolve()


def save_embedding_settings(settings: EmbeddingSettings, path: str | None = None) -> Path:
    """Write settings as JSON and return the file path."""
    target = resolve_settings_path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(settings.model_dump_json(indent=2), encoding="utf-8")
    return target


def load_embedding_settings(path: str | None = None) -> EmbeddingSettings | None:
    """Read settings saved by `save_embedding_settings`; None if absent or unreadable."""
    target = resolve_settings_path(path)
    if not target.exists():
        return None
    try:
        return EmbeddingSettings.model_validate_json(target.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as exc:
        logger.warning("Ignoring unreadable embedding settings %s: %s", target, exc)
        return None
