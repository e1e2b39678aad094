from __future__ import annotations

import hashlib
import logging
import os
from functools import lru_cache
from typing import List

from dotenv import load_dotenv
from pydantic_settings import BaseSettings
from pydantic import Field

load_dotenv()

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    secret_key: str = Field(default="CHANGE_ME", alias="SECRET_KEY")
    algorithm: str = "HS256"
    admin_password: str = Field(default="", alias="ADMIN_PASSWORD")
    admin_token_ttl_sec: int = Field(default=3600, alias="ADMIN_TOKEN_TTL_SEC")

    database_url: str = Field(default="sqlite+aiosqlite:///./loteria.db", alias="DATABASE_URL")
    origin: str = Field(default="", alias="ORIGIN")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Card calling cadence (seconds between cards)
    call_interval_sec: float = Field(default=3.5, alias="CALL_INTERVAL_SEC")
    max_players: int = Field(default=100, alias="MAX_PLAYERS")

    # Presence: flag offline after the first window, reap after the second
    presence_offline_after_sec: int = Field(default=60, alias="PRESENCE_OFFLINE_AFTER_SEC")
    presence_timeout_sec: int = Field(default=300, alias="PRESENCE_TIMEOUT_SEC")
    presence_sweep_interval_sec: float = Field(default=15, alias="PRESENCE_SWEEP_INTERVAL_SEC")
    clear_players_on_startup: bool = Field(default=True, alias="CLEAR_PLAYERS_ON_STARTUP")

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def allowed_origins(self) -> List[str]:
        """
        Splits ORIGIN by commas, e.g. "https://loteria.app, https://www.loteria.app".
        """
        extra = [x.strip() for x in self.origin.split(",") if x.strip()]
        return ["http://localhost:3000"] + extra

    def masked_secret(self) -> str:
        if not self.secret_key:
            return "<empty>"
        if len(self.secret_key) <= 4:
            return "***"
        return f"{self.secret_key[:2]}***{self.secret_key[-2:]}"

    def log_status(self) -> None:
        env_name = os.getenv("RENDER_SERVICE_NAME") or os.getenv("RENDER_EXTERNAL_URL") or os.getenv(
            "ENV", "unknown"
        )
        secret_hash = hashlib.sha256(self.secret_key.encode()).hexdigest()[:8]
        logger.info(
            "Settings: secret_key=%s (hash=%s), admin_password=%s, env=%s",
            self.masked_secret(),
            secret_hash,
            "set" if self.admin_password else "<empty>",
            env_name,
        )
        logger.info(
            "Game settings: call_interval=%ss max_players=%s presence=%ss/%ss",
            self.call_interval_sec,
            self.max_players,
            self.presence_offline_after_sec,
            self.presence_timeout_sec,
        )


@lru_cache()
def get_settings() -> Settings:
    settings = Settings()
    settings.log_status()
    return settings


settings = get_settings()
