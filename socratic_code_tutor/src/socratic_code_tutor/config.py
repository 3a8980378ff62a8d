"""
Runtime configuration.

Values come from the environment (a local .env file is loaded first).
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass
class TutorSettings:
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    generation_max_attempts: int = 3
    classify_max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    summary_interval: int = 3
    session_idle_ttl_minutes: int = 120
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    log_level: str = "INFO"

    @property
    def persistence_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)

    @classmethod
    def from_env(cls) -> "TutorSettings":
        load_dotenv()
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            generation_max_attempts=_env_int("GENERATION_MAX_ATTEMPTS", 3, minimum=1),
            classify_max_attempts=_env_int("CLASSIFY_MAX_ATTEMPTS", 3, minimum=1),
            backoff_base_seconds=_env_float("BACKOFF_BASE_SECONDS", 1.0),
            summary_interval=_env_int("SUMMARY_INTERVAL", 3, minimum=1),
            session_idle_ttl_minutes=_env_int("SESSION_IDLE_TTL_MINUTES", 120),
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_service_key=os.getenv("SUPABASE_SERVICE_KEY"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
