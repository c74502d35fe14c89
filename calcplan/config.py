"""
Environment configuration.

All settings come from environment variables; explicit arguments passed to
builders / services always win over these defaults.
"""

from __future__ import annotations
from dataclasses import dataclass, field
import os

DEFAULT_CREATED_BY = "awesome-gpt5.2-xhigh"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    """Runtime settings resolved from the environment."""
    env: str = "development"
    created_by: str = DEFAULT_CREATED_BY
    cache_dir: str | None = None
    sandbox_timeout_ms: int = 2000
    log_level: str = "WARNING"
    allowed_origins: list[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            env=os.getenv("CALCPLAN_ENV", "development"),
            created_by=os.getenv("CALCPLAN_CREATED_BY", DEFAULT_CREATED_BY),
            cache_dir=os.getenv("CALCPLAN_CACHE_DIR") or None,
            sandbox_timeout_ms=_int_env("CALCPLAN_SANDBOX_TIMEOUT_MS", 2000),
            log_level=os.getenv("CALCPLAN_LOG_LEVEL", "WARNING").upper(),
            allowed_origins=os.getenv("ALLOWED_ORIGINS", "*").split(","),
        )


def get_settings() -> Settings:
    """Read settings from the current environment."""
    return Settings.from_env()
