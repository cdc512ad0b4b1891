"""Runtime settings loaded from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional, Tuple

from .assistant.clients import PROVIDERS
from .errors import ConfigError

MIN_SECRET_LENGTH = 32
DEV_TOKEN_SECRET = "local-dev-access-token-secret-change-me"


def _get_str(env: Mapping[str, str], key: str, default: str) -> str:
    value = env.get(key)
    if value is None:
        return default
    value = value.strip()
    if not value:
        raise ConfigError(f"Config '{key}' must be a non-empty string.")
    return value


def _get_number(env: Mapping[str, str], key: str, default: Any, cast: type) -> Any:
    value = env.get(key)
    if value is None or not value.strip():
        return default
    try:
        return cast(value.strip())
    except ValueError as exc:
        raise ConfigError(f"Config '{key}' must be a {cast.__name__}, got '{value}'.") from exc


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    value = env.get(key)
    if value is None or not value.strip():
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ConfigError(f"Config '{key}' must be a boolean, got '{value}'.")


@dataclass(frozen=True)
class Settings:
    llm_provider: str = "openai"
    llm_model: Optional[str] = None
    llm_api_key: Optional[str] = None
    llm_temperature: float = 0.2
    llm_timeout: float = 30.0
    llm_max_retries: int = 2
    database_path: str = "expenses.sqlite"
    history_limit: int = 50
    max_turn_steps: int = 25
    process_all_tool_calls: bool = False
    access_token_secret: str = DEV_TOKEN_SECRET
    allowed_origins: Tuple[str, ...] = field(default=("http://localhost:5173",))
    host: str = "0.0.0.0"
    port: int = 4100

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, *, require_api_key: bool = True) -> "Settings":
        env = os.environ if env is None else env

        provider = _get_str(env, "LLM_PROVIDER", "openai").lower()
        if provider not in PROVIDERS:
            raise ConfigError(
                f"Config 'LLM_PROVIDER' must be one of {', '.join(sorted(PROVIDERS))}, got '{provider}'."
            )
        preset = PROVIDERS[provider]
        prefix = provider.upper()
        api_key = env.get(preset.api_key_env) or None
        if require_api_key and not api_key:
            raise ConfigError(
                f"LLM_PROVIDER is set to '{provider}' but {preset.api_key_env} is missing."
            )

        origins = tuple(
            origin.strip()
            for origin in _get_str(env, "ALLOWED_ORIGINS", "http://localhost:5173").split(",")
            if origin.strip()
        )

        settings = cls(
            llm_provider=provider,
            llm_model=_get_str(env, f"{prefix}_MODEL", preset.default_model),
            llm_api_key=api_key,
            llm_temperature=_get_number(env, "LLM_TEMPERATURE", 0.2, float),
            llm_timeout=_get_number(env, "LLM_TIMEOUT", 30.0, float),
            llm_max_retries=_get_number(env, "LLM_MAX_RETRIES", 2, int),
            database_path=_get_str(env, "DATABASE_PATH", "expenses.sqlite"),
            history_limit=_get_number(env, "HISTORY_LIMIT", 50, int),
            max_turn_steps=_get_number(env, "MAX_TURN_STEPS", 25, int),
            process_all_tool_calls=_get_bool(env, "PROCESS_ALL_TOOL_CALLS", False),
            access_token_secret=_get_str(env, "ACCESS_TOKEN_SECRET", DEV_TOKEN_SECRET),
            allowed_origins=origins,
            host=_get_str(env, "HOST", "0.0.0.0"),
            port=_get_number(env, "PORT", 4100, int),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.llm_provider not in PROVIDERS:
            raise ConfigError(f"Unsupported provider '{self.llm_provider}'.")
        if len(self.access_token_secret) < MIN_SECRET_LENGTH:
            raise ConfigError(f"Config 'ACCESS_TOKEN_SECRET' must be at least {MIN_SECRET_LENGTH} chars.")
        if self.history_limit < 1:
            raise ConfigError("Config 'HISTORY_LIMIT' must be at least 1.")
        if self.max_turn_steps < 2:
            raise ConfigError("Config 'MAX_TURN_STEPS' must be at least 2.")
        if not 0.0 <= self.llm_temperature <= 2.0:
            raise ConfigError("Config 'LLM_TEMPERATURE' must be between 0 and 2.")

    def override(self, **changes: Any) -> "Settings":
        """Return a copy with the non-``None`` values of ``changes`` applied."""

        applied = {key: value for key, value in changes.items() if value is not None}
        if not applied:
            return self
        updated = replace(self, **applied)
        updated.validate()
        return updated


__all__ = ["DEV_TOKEN_SECRET", "Settings"]
