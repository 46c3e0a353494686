"""Application settings and configuration helpers."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Literal

from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Strongly-typed configuration sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    app_name: str = Field(default="Assistant Orchestrator", description="Human-readable service name.")
    environment: str = Field(default="local", description="Deployment environment identifier.")
    log_level: str = Field(default="INFO", description="Application log level.")

    state_db_path: Path = Field(
        default=Path("../db/conversation_state.db"),
        description="SQLite file holding suspended turns and archived thread memory.",
    )

    hitl_timeout_seconds: int = Field(
        default=300,
        ge=1,
        description="How long a clarification request stays answerable after the turn suspends.",
    )
    hitl_mismatch_policy: Literal["reprompt", "abandon"] = Field(
        default="reprompt",
        description=(
            "What to do with a reply that does not match the pending clarification: "
            "'reprompt' keeps the interrupt and asks again, 'abandon' drops it and starts a new turn."
        ),
    )
    retry_window_seconds: int = Field(
        default=300,
        ge=1,
        description="How long a turn that ended with failed steps can be retried under its original trace.",
    )
    recent_messages_limit: int = Field(
        default=10,
        ge=1,
        description="Maximum number of recent messages kept in conversation state.",
    )

    batch_concurrency: int = Field(default=5, ge=1, description="Simultaneous turns for batch callers.")
    batch_max_retries: int = Field(
        default=2,
        ge=0,
        description="Retries for transient delivery failures in batch runs.",
    )
    batch_retry_base_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="First backoff delay; doubles on every further retry.",
    )

    default_timezone: str = Field(default="Asia/Jerusalem", description="Timezone for new users.")
    default_language: Literal["he", "en", "other"] = Field(
        default="en",
        description="Reply language for new users.",
    )

    openrouter_api_key: str | None = Field(
        default=None,
        description="Optional OpenRouter API key enabling the LLM classifier.",
    )
    openrouter_model: str = Field(
        default="minimax/minimax-m2:free",
        description="OpenRouter model identifier.",
    )
    openrouter_referer: str | None = Field(
        default=None,
        description="Referer header required by OpenRouter (your app URL).",
    )
    openrouter_title: str | None = Field(
        default="Assistant Orchestrator",
        description="Title header sent to OpenRouter.",
    )
    classifier_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="HTTP timeout for a single classification call.",
    )

    frontend_origin: AnyHttpUrl | None = Field(
        default=None,
        description="Allowed frontend origin (CORS). If omitted, defaults to localhost dev server.",
    )
    additional_origins: List[AnyHttpUrl] = Field(
        default_factory=list,
        description="Additional allowed CORS origins for multi-client deployments.",
    )

    @property
    def cors_origins(self) -> list[str]:
        """Return the full list of allowed CORS origins."""

        origins: list[str] = []

        if self.frontend_origin:
            origins.append(str(self.frontend_origin).rstrip("/"))
        else:
            origins.extend([
                "http://localhost:5173",
                "http://127.0.0.1:5173",
            ])

        for origin in self.additional_origins:
            origins.append(str(origin).rstrip("/"))

        # Deduplicate while preserving order
        seen: set[str] = set()
        unique: list[str] = []
        for origin in origins:
            if origin not in seen:
                seen.add(origin)
                unique.append(origin)

        return unique

    @property
    def classifier_enabled(self) -> bool:
        return bool(self.openrouter_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings instance."""

    return Settings()
