"""Configuration helpers for backend runtime."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass


@dataclass(frozen=True)
class BackendSettings:
    session_secret: str
    database_url: str | None
    redis_url: str | None
    host: str
    port: int
    cache_ttl_seconds: int = 300
    send_timeout_seconds: float = 10.0
    store_retry_attempts: int = 3
    store_retry_backoff_seconds: float = 0.05
    log_level: str = "INFO"


def load_settings() -> BackendSettings:
    port_raw = os.getenv("SWIPEMATCH_PORT", "8000")
    return BackendSettings(
        session_secret=os.getenv("SWIPEMATCH_SESSION_SECRET", "dev-secret"),
        database_url=os.getenv("SWIPEMATCH_DATABASE_URL"),
        redis_url=os.getenv("SWIPEMATCH_REDIS_URL"),
        host=os.getenv("SWIPEMATCH_HOST", "127.0.0.1"),
        port=int(port_raw),
        cache_ttl_seconds=int(os.getenv("SWIPEMATCH_CACHE_TTL_SECONDS", "300")),
        send_timeout_seconds=float(os.getenv("SWIPEMATCH_SEND_TIMEOUT_SECONDS", "10")),
        store_retry_attempts=max(int(os.getenv("SWIPEMATCH_STORE_RETRY_ATTEMPTS", "3")), 1),
        store_retry_backoff_seconds=float(os.getenv("SWIPEMATCH_STORE_RETRY_BACKOFF_SECONDS", "0.05")),
        log_level=os.getenv("SWIPEMATCH_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
