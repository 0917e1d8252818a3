# feed_ingest/core/config.py
from __future__ import annotations

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# .env naast de repo-root (feed_ingest/core/config.py → parents[2])
ENV_FILE = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(ENV_FILE, override=False)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:109.0) "
    "Gecko/20100101 Firefox/109.0"
)


class Settings(BaseSettings):
    # ---- App / Infra ----
    LOG_LEVEL: str = "INFO"

    # Alleen vereist zodra de Postgres store gebruikt wordt.
    DATABASE_URL: Optional[str] = None
    DB_POOL_MIN_SIZE: int = 1
    DB_POOL_MAX_SIZE: int = 4
    STATEMENT_TIMEOUT_MS: int = 30000

    # ---- Ingest ----
    FEED_FETCH_TIMEOUT_S: float = 5.0
    PAGE_METADATA_TIMEOUT_S: float = 5.0
    INGEST_USER_AGENT: str = BROWSER_USER_AGENT
    INGEST_MAX_CONCURRENCY: int = 5
    LANG_DETECT_MIN_PROBABILITY: float = 0.5

    # ---- Publication ----
    ARTICLES_NOTIFY_CHANNEL: str = "articles"

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()


def require_database_url() -> str:
    """
    Runtime-check met een duidelijke foutmelding als DATABASE_URL ontbreekt.
    """
    if not settings.DATABASE_URL:
        raise RuntimeError(
            "DATABASE_URL not set. Check .env "
            f"(tried to load from: {ENV_FILE})."
        )
    return settings.DATABASE_URL
