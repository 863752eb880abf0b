import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        sweep_secret: str,
        db_timeout_secs: float,
        notify_webhook_url: str,
        notify_timeout_secs: float,
        notify_channels: list[str],
        sweep_deadline_secs: float,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.sweep_secret = sweep_secret
        self.db_timeout_secs = db_timeout_secs
        self.notify_webhook_url = notify_webhook_url
        self.notify_timeout_secs = notify_timeout_secs
        self.notify_channels = notify_channels
        self.sweep_deadline_secs = sweep_deadline_secs
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGETS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _split_channels(raw: str) -> list[str]:
    return [part.strip().lower() for part in raw.split(",") if part.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budgets.db"
    database_url = os.getenv("BUDGETS_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUDGETS_TIMEZONE", "Europe/Berlin")
    csrf_secret = os.getenv(
        "BUDGETS_CSRF_SECRET",
        "5f0c3d8e4b1a2f7d9c6e0b3a8d4f1e2c7b9a0d5e3f6c1b8a4e2d7f0c9b3a6e1d",
    )
    sweep_secret = os.getenv("BUDGETS_SWEEP_SECRET", csrf_secret)
    db_timeout_secs = float(os.getenv("BUDGETS_DB_TIMEOUT_SECS", "10"))
    notify_webhook_url = os.getenv("BUDGETS_NOTIFY_WEBHOOK_URL", "")
    notify_timeout_secs = float(os.getenv("BUDGETS_NOTIFY_TIMEOUT_SECS", "5"))
    notify_channels = _split_channels(os.getenv("BUDGETS_NOTIFY_CHANNELS", "push,email"))
    sweep_deadline_secs = float(os.getenv("BUDGETS_SWEEP_DEADLINE_SECS", "300"))
    log_level = os.getenv("BUDGETS_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        sweep_secret=sweep_secret,
        db_timeout_secs=db_timeout_secs,
        notify_webhook_url=notify_webhook_url,
        notify_timeout_secs=notify_timeout_secs,
        notify_channels=notify_channels,
        sweep_deadline_secs=sweep_deadline_secs,
        log_level=log_level,
    )
