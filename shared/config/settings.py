from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
import os


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./clouddrive_billing.db"
    redis_url: Optional[str] = None

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    environment: str = "development"
    admin_cors_origins: str = "http://localhost:3000,http://localhost:5173"

    # Catalog / ledger
    default_plan_id: str = "free"
    currency: str = "INR"

    # Payment flow
    payment_max_retries: int = 3  # retries after the first attempt
    payment_retry_backoff_base: float = 1.0  # seconds, doubled per attempt
    payment_processing_timeout: float = 30.0
    payment_intent_ttl_minutes: int = 30
    payment_poll_interval: float = 5.0
    intent_expiry_sweep_interval: int = 60

    # UPI collect details shown on the QR code
    upi_payee_id: str = "clouddrive@okicici"
    upi_payee_name: str = "CloudDrive"

    events_channel: str = "payment_events"

    # Look for .env file in project root
    model_config = SettingsConfigDict(
        env_file=os.path.join(os.path.dirname(__file__), "../..", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
