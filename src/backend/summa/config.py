from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Summa"
    LOG_LEVEL: str = "INFO"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    # Persistence ("sqlite" or "supabase")
    STORE_BACKEND: str = "sqlite"
    SQLITE_PATH: str = "summa.sqlite"

    # Supabase
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_KEY: str = ""
    SNAPSHOT_TABLE: str = "value_snapshots"
    SERIES_TABLE: str = "series"

    # OCR
    TESSERACT_CMD: str = "/usr/local/bin/tesseract"  # macOS default

    # Analysis
    EXTERNAL_CALL_TIMEOUT_SECONDS: float = 20.0

    # Uploads
    MAX_UPLOAD_MB: int = 10

    # Series
    MAX_SERIES_COUNT: int = 10
    DEFAULT_SERIES_NAME: str = "Default"
    LAST_USED_SERIES_ID: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
