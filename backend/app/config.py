from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from backend.integrations.completion import DEFAULT_BASE_URL
from backend.integrations.github import DEFAULT_API_URL


DEFAULT_PRIMARY_MODEL = "llama-3.3-70b-versatile"
DEFAULT_FAST_MODEL = "llama-3.1-8b-instant"
DEFAULT_LLM_TIMEOUT_SECONDS = 60.0
DEFAULT_HTTP_TIMEOUT_SECONDS = 20.0


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, read once from the environment."""

    llm_api_key: str = ""
    llm_base_url: str = DEFAULT_BASE_URL
    primary_model: str = DEFAULT_PRIMARY_MODEL
    fast_model: str = DEFAULT_FAST_MODEL
    llm_timeout_seconds: float = DEFAULT_LLM_TIMEOUT_SECONDS
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    github_api_url: str = DEFAULT_API_URL
    app_url: Optional[str] = None
    api_tokens: str = ""
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            llm_api_key=env.get("GROQ_API_KEY", "").strip(),
            llm_base_url=(env.get("SHIPSAFE_LLM_BASE_URL") or DEFAULT_BASE_URL).rstrip("/"),
            primary_model=env.get("SHIPSAFE_PRIMARY_MODEL") or DEFAULT_PRIMARY_MODEL,
            fast_model=env.get("SHIPSAFE_FAST_MODEL") or DEFAULT_FAST_MODEL,
            llm_timeout_seconds=_as_float(env.get("SHIPSAFE_LLM_TIMEOUT"), DEFAULT_LLM_TIMEOUT_SECONDS),
            http_timeout_seconds=_as_float(env.get("SHIPSAFE_HTTP_TIMEOUT"), DEFAULT_HTTP_TIMEOUT_SECONDS),
            github_api_url=(env.get("GITHUB_API_URL") or DEFAULT_API_URL).rstrip("/"),
            app_url=(env.get("SHIPSAFE_APP_URL") or "").strip().rstrip("/") or None,
            api_tokens=env.get("SHIPSAFE_API_TOKENS", ""),
            log_level=(env.get("LOGLEVEL") or "INFO").upper(),
        )


def load_settings() -> Settings:
    return Settings.from_env()


def _as_float(value: Optional[str], default: float) -> float:
    if value is None or not str(value).strip():
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default
