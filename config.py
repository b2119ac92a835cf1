import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        default_account_id: str,
        max_upload_bytes: int,
        log_level: str,
        openai_api_key: Optional[str],
        openai_base_url: Optional[str],
        extraction_model: str,
        extraction_timeout_secs: float,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.default_account_id = default_account_id
        self.max_upload_bytes = max_upload_bytes
        self.log_level = log_level
        self.openai_api_key = openai_api_key
        self.openai_base_url = openai_base_url
        self.extraction_model = extraction_model
        self.extraction_timeout_secs = extraction_timeout_secs


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("HOUSEHOLD_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "household.db"
    database_url = os.getenv("HOUSEHOLD_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("HOUSEHOLD_TIMEZONE", "America/Toronto")
    default_account_id = os.getenv("HOUSEHOLD_DEFAULT_ACCOUNT", "local")
    max_upload_bytes = int(
        os.getenv("HOUSEHOLD_MAX_UPLOAD_BYTES", str(10 * 1024 * 1024))
    )
    log_level = os.getenv("HOUSEHOLD_LOG_LEVEL", "INFO").upper()
    extraction_model = os.getenv("HOUSEHOLD_EXTRACTION_MODEL", "gpt-4o-mini")
    extraction_timeout_secs = float(
        os.getenv("HOUSEHOLD_EXTRACTION_TIMEOUT_SECS", "60")
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        default_account_id=default_account_id,
        max_upload_bytes=max_upload_bytes,
        log_level=log_level,
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
        extraction_model=extraction_model,
        extraction_timeout_secs=extraction_timeout_secs,
    )
