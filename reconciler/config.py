from dataclasses import dataclass
import os

from dotenv import load_dotenv


load_dotenv()


@dataclass(frozen=True)
class Settings:
    app_name: str
    database_url: str
    log_level: str
    max_workers: int
    max_update_retries: int
    retry_backoff_seconds: float
    match_policy: str
    stale_report_minutes: int
    reaper_interval_minutes: int


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("APP_NAME", "reconciler"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./reconciler.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        max_workers=int(os.getenv("MAX_WORKERS", "4")),
        max_update_retries=int(os.getenv("MAX_UPDATE_RETRIES", "2")),
        retry_backoff_seconds=float(os.getenv("RETRY_BACKOFF_SECONDS", "1")),
        match_policy=os.getenv("MATCH_POLICY", "first"),
        stale_report_minutes=int(os.getenv("STALE_REPORT_MINUTES", "60")),
        reaper_interval_minutes=int(os.getenv("REAPER_INTERVAL_MINUTES", "15")),
    )
