# -*- coding: utf-8 -*-

# --- IMPORTS ---
import logging
import os
from dataclasses import dataclass
from datetime import timedelta

# File / Environment
from dotenv import load_dotenv

# Local Imports
from .constants import (
    DATA_DIR_NAME, DEFAULT_BASE_PATH, YANDEX_DEFAULT_REDIRECT_URI,
    DEFAULT_CLEANUP_INTERVAL_MINUTES, DEFAULT_FILE_RETENTION_MINUTES,
    DEFAULT_PENDING_TTL_HOURS, DEFAULT_WIZARD_TTL_HOURS, DEFAULT_REQUEST_TIMEOUT_SECONDS
)
from .errors import ConfigError

# --- BASIC SETUP ---
logger = logging.getLogger(__name__)

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


@dataclass(frozen=True)
class Settings:
    telegram_token: str | None
    webhook_url: str
    yandex_client_id: str
    yandex_client_secret: str
    yandex_redirect_uri: str
    default_base_path: str
    data_dir: str
    cleanup_interval: timedelta
    file_retention: timedelta
    pending_ttl: timedelta
    wizard_ttl: timedelta
    request_timeout: float

    @property
    def polling(self) -> bool:
        return self.webhook_url.upper() == "POLLING"


def _number(env, name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value


def load_settings(env=None, dotenv: bool = True) -> Settings:
    """Builds the settings from environment variables (and the .env file)."""
    if dotenv:
        load_dotenv()
    if env is None:
        env = os.environ

    webhook_url = env.get("WEBHOOK_URL") or ""
    if not webhook_url:
        logger.warning("WEBHOOK_URL not set. Defaulting to POLLING mode.")
        webhook_url = "POLLING"

    base_path = env.get("DEFAULT_BASE_PATH") or DEFAULT_BASE_PATH
    if not base_path.startswith("/"):
        base_path = "/" + base_path

    return Settings(
        telegram_token=env.get("TELEGRAM_BOT_TOKEN"),
        webhook_url=webhook_url,
        yandex_client_id=env.get("YANDEX_CLIENT_ID", ""),
        yandex_client_secret=env.get("YANDEX_CLIENT_SECRET", ""),
        yandex_redirect_uri=env.get("YANDEX_REDIRECT_URI") or YANDEX_DEFAULT_REDIRECT_URI,
        default_base_path=base_path.rstrip("/") or "/",
        data_dir=env.get("DATA_DIR") or os.path.join(PROJECT_ROOT, DATA_DIR_NAME),
        cleanup_interval=timedelta(minutes=_number(env, "CLEANUP_INTERVAL_MINUTES", DEFAULT_CLEANUP_INTERVAL_MINUTES)),
        file_retention=timedelta(minutes=_number(env, "FILE_RETENTION_MINUTES", DEFAULT_FILE_RETENTION_MINUTES)),
        pending_ttl=timedelta(hours=_number(env, "PENDING_TTL_HOURS", DEFAULT_PENDING_TTL_HOURS)),
        wizard_ttl=timedelta(hours=_number(env, "WIZARD_TTL_HOURS", DEFAULT_WIZARD_TTL_HOURS)),
        request_timeout=_number(env, "REQUEST_TIMEOUT_SECONDS", DEFAULT_REQUEST_TIMEOUT_SECONDS),
    )
