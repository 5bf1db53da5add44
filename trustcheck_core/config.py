"""Environment-driven settings for the TrustCheck core service."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

_HERE = Path(__file__).resolve()
_REPO_ROOT = _HERE.parents[1]


def load_env_files() -> None:
    # Real environment variables always win over .env values.
    load_dotenv(_REPO_ROOT / ".env", override=False)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    agent_url: str | None = None
    redis_url: str | None = None
    rdap_base_url: str = "https://rdap.org"
    enable_cache: bool = True
    cache_ttl_seconds: int = 60 * 60 * 24
    default_timeout_ms: int = 20000
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_env_files()
        agent_url = os.getenv("PYTHON_AGENT_URL", "").strip().rstrip("/")
        return cls(
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            gemini_model=os.getenv("GEMINI_MODEL") or "gemini-2.5-flash",
            agent_url=agent_url or None,
            redis_url=os.getenv("REDIS_URL") or None,
            rdap_base_url=(os.getenv("RDAP_BASE_URL") or "https://rdap.org").rstrip("/"),
            enable_cache=_env_bool("ENABLE_CACHE", True),
            cache_ttl_seconds=max(1, _env_int("CACHE_TTL_SECONDS", 60 * 60 * 24)),
            default_timeout_ms=max(1000, min(60000, _env_int("DEFAULT_TIMEOUT_MS", 20000))),
            cors_origins=_env_list("TRUSTCHECK_CORS_ORIGINS", ["http://localhost:3000"]),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )
