"""
Bot settings loaded from environment variables (and a ``.env`` file, if present).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


@dataclass(frozen=True)
class Settings:
    """Immutable settings, read once at startup."""

    discord_token: str = field(default_factory=lambda: os.getenv("DISCORD_TOKEN", ""))
    command_prefix: str = field(default_factory=lambda: os.getenv("COMMAND_PREFIX", "!"))

    # Seconds an empty session stays connected before it is torn down
    idle_timeout: float = field(default_factory=lambda: _env_float("IDLE_TIMEOUT", 300.0))
    # Seconds to wait for the voice connection to come back after a disconnect
    reconnect_grace: float = field(default_factory=lambda: _env_float("RECONNECT_GRACE", 5.0))
    # 0 = never give up on a run of failing songs
    max_consecutive_failures: int = field(
        default_factory=lambda: _env_int("MAX_CONSECUTIVE_FAILURES", 0)
    )
    volume: float = field(default_factory=lambda: _env_float("VOLUME", 0.5))

    metrics_port: Optional[int] = field(default_factory=lambda: _env_optional_int("METRICS_PORT"))
    web_port: Optional[int] = field(default_factory=lambda: _env_optional_int("WEB_PORT"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
