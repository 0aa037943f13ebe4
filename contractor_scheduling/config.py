# contractor_scheduling/config.py

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    database_url: str = "sqlite:///./scheduling.db"
    redis_url: str = "redis://localhost:6379/0"

    # HubSpot CRM mirror
    hubspot_access_token: str = ""
    hubspot_base_url: str = "https://api.hubapi.com"
    hubspot_timeout_seconds: float = 10.0

    # Outbox worker
    sync_max_attempts: int = 5
    sync_backoff_base_seconds: int = 30
    sync_max_backoff_seconds: int = 3600
    sync_poll_interval_seconds: int = 15
    sync_batch_size: int = 50

    # Availability
    default_slot_minutes: int = 60

    # Booking critical section
    lock_timeout_seconds: float = 10.0

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        extra="ignore",
    )

    @property
    def resolved_database_url(self) -> str:
        url = self.database_url
        if url.startswith("sqlite:///./"):
            # relative sqlite path -> absolute, anchored at the project root
            relative_path = url.replace("sqlite:///./", "")
            absolute_path = BASE_DIR / relative_path
            return f"sqlite:///{absolute_path}"
        return url


settings = Settings()
