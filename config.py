from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv


def _get_env(key: str, default: str) -> str:
    value = os.getenv(key, "").strip()
    return value or default


@dataclass(frozen=True)
class Settings:
    """Runtime configuration read from the environment (and `.env` when present)."""

    port: int = 8080
    database_path: str = "./mcp_server.db"
    environment: str = "development"
    log_level: str = "INFO"

    # Grok / OpenAI-compatible completion API
    grok_api_key: str = ""
    grok_model: str = "grok-beta"
    grok_base_url: str = "https://api.x.ai/v1"
    grok_timeout: float = 30.0

    # WhatsApp Business API
    whatsapp_access_token: str = ""
    whatsapp_verify_token: str = ""
    whatsapp_phone_number_id: str = ""
    whatsapp_webhook_url: str = ""

    session_cleanup_interval: int = 3600

    @property
    def grok_configured(self) -> bool:
        return bool(self.grok_api_key)


def load_settings(env_file: str | None = None) -> Settings:
    """Build Settings from the process environment.

    Values already present in the environment win over `.env` entries.
    """
    load_dotenv(env_file, override=False)

    return Settings(
        port=int(_get_env("PORT", "8080")),
        database_path=_get_env("DATABASE_PATH", "./mcp_server.db"),
        environment=_get_env("ENVIRONMENT", "development"),
        log_level=_get_env("LOG_LEVEL", "INFO").upper(),
        grok_api_key=_get_env("GROK_API_KEY", ""),
        grok_model=_get_env("GROK_MODEL", "grok-beta"),
        grok_base_url=_get_env("GROK_BASE_URL", "https://api.x.ai/v1").rstrip("/"),
        grok_timeout=float(_get_env("GROK_TIMEOUT", "30")),
        whatsapp_access_token=_get_env("WHATSAPP_ACCESS_TOKEN", ""),
        whatsapp_verify_token=_get_env("WHATSAPP_VERIFY_TOKEN", ""),
        whatsapp_phone_number_id=_get_env("WHATSAPP_PHONE_NUMBER_ID", ""),
        whatsapp_webhook_url=_get_env("WHATSAPP_WEBHOOK_URL", ""),
        session_cleanup_interval=int(_get_env("SESSION_CLEANUP_INTERVAL_SEC", "3600")),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
