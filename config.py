import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        identity_secret: str,
        identity_max_age_secs: int,
        duplicate_check_delay_ms: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.identity_secret = identity_secret
        self.identity_max_age_secs = identity_max_age_secs
        self.duplicate_check_delay_ms = duplicate_check_delay_ms


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("SERVICES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "services.db"
    database_url = os.getenv("SERVICES_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("SERVICES_TIMEZONE", "America/Sao_Paulo")
    csrf_secret = os.getenv(
        "SERVICES_CSRF_SECRET",
        "5c1f0a7e9b24d6c38e0f71a2b94d5c6e8a03f17b2c9d4e5f60718a9b0c1d2e3f",
    )
    identity_secret = os.getenv(
        "SERVICES_IDENTITY_SECRET",
        "0b9e3c7a14f2d8e65a0c3b7f91d2e4a6c8f0b1d3e5a7c9f2b4d6e8a0c2e4f6a8",
    )
    identity_max_age_secs = int(os.getenv("SERVICES_IDENTITY_MAX_AGE_SECS", "43200"))
    duplicate_check_delay_ms = int(
        os.getenv("SERVICES_DUPLICATE_CHECK_DELAY_MS", "500")
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        identity_secret=identity_secret,
        identity_max_age_secs=identity_max_age_secs,
        duplicate_check_delay_ms=duplicate_check_delay_ms,
    )
