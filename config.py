import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        new_user_window_secs: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.new_user_window_secs = new_user_window_secs
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("KAKEIBO_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "kakeibo.db"
    database_url = os.getenv("KAKEIBO_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("KAKEIBO_TIMEZONE", "Asia/Tokyo")
    new_user_window_secs = int(os.getenv("KAKEIBO_NEW_USER_WINDOW_SECS", "300"))
    log_level = os.getenv("KAKEIBO_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        new_user_window_secs=new_user_window_secs,
        log_level=log_level,
    )
