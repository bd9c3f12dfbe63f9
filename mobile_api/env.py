from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

from dotenv import load_dotenv

from .constants import (
    DEFAULT_CREDENTIALS_PATH,
    DEFAULT_TIMEOUT_SECONDS,
    LOGGER,
    REFRESH_ENDPOINT,
)


@dataclass
class ClientConfig:
    base_url: str
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    refresh_endpoint: str = REFRESH_ENDPOINT
    credentials_path: str = DEFAULT_CREDENTIALS_PATH
    debug: bool = False


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")
    if value <= 0:
        raise RuntimeError(f"{key} must be greater than zero.")
    return value


def load_env(path: str | Path | None = None) -> None:
    env_path = Path(path) if path is not None else Path.cwd() / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    base_url = os.getenv("API_BASE_URL", "").strip()
    if not base_url:
        raise RuntimeError("Missing required environment variable: API_BASE_URL")

    parsed = urlparse(base_url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise RuntimeError(
            "API_BASE_URL must be a valid HTTP(S) URL (for example: "
            "https://api.example.com)."
        )


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("API_DEBUG"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
    return debug_enabled


def load_config() -> ClientConfig:
    validate_env()
    return ClientConfig(
        base_url=os.getenv("API_BASE_URL", "").strip().rstrip("/"),
        timeout=_get_env_float("API_TIMEOUT", DEFAULT_TIMEOUT_SECONDS),
        refresh_endpoint=os.getenv("API_REFRESH_ENDPOINT", "").strip() or REFRESH_ENDPOINT,
        credentials_path=os.getenv("API_CREDENTIALS_PATH", "").strip()
        or DEFAULT_CREDENTIALS_PATH,
        debug=is_truthy(os.getenv("API_DEBUG")),
    )
