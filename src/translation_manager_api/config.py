import logging
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    SUPABASE_URL: Optional[str] = None
    SUPABASE_KEY: Optional[str] = None
    # "supabase" or "memory"
    STORAGE_BACKEND: str = "supabase"
    DOCUMENTS_TABLE: str = "translation_documents"
    DOCUMENT_ID: str = "data"
    ACTIVITY_TABLE: str = "activity_logs"

    SAVE_DEBOUNCE_SECONDS: float = 1.0
    SYNC_POLL_SECONDS: float = 5.0
    LOCAL_CACHE_PATH: str = ".translation_cache.json"

    ALLOWED_ORIGINS: List[str] = ["*"]
    LOG_LEVEL: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
