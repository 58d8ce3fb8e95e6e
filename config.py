import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        default_currency: str,
        remote_timeout_secs: float,
        session_max_age_hours: int,
        reset_max_age_minutes: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.default_currency = default_currency
        self.remote_timeout_secs = remote_timeout_secs
        self.session_max_age_hours = session_max_age_hours
        self.reset_max_age_minutes = reset_max_age_minutes
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("SPEND_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "spendtracker.db"
    database_url = os.getenv("SPEND_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("SPEND_TIMEZONE", "Europe/Berlin")
    secret_key = os.getenv(
        "SPEND_SECRET_KEY",
        "4f0c2d9b7e61a3c85d2e7f90b1a64c3e8d5f27a9c0b3e6d1f4a7c2e9b5d8f1a3",
    )
    default_currency = os.getenv("SPEND_DEFAULT_CURRENCY", "USD").upper()
    remote_timeout_secs = float(os.getenv("SPEND_REMOTE_TIMEOUT_SECS", "10"))
    session_max_age_hours = int(os.getenv("SPEND_SESSION_MAX_AGE_HOURS", "720"))
    reset_max_age_minutes = int(os.getenv("SPEND_RESET_MAX_AGE_MINUTES", "60"))
    log_level = os.getenv("SPEND_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        default_currency=default_currency,
        remote_timeout_secs=remote_timeout_secs,
        session_max_age_hours=session_max_age_hours,
        reset_max_age_minutes=reset_max_age_minutes,
        log_level=log_level,
    )
