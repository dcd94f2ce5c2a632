"""Runtime settings for the Plexus case-generation backend."""
from functools import lru_cache
from pathlib import Path

from pydantic import AnyUrl
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent / "data" / "diseases.json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Plexus"
    log_level: str = "INFO"
    log_json: bool = True
    redis_url: AnyUrl = "redis://localhost:6379/0"
    throttle_backend: str = "memory"
    throttle_sweep_interval_seconds: float = 300.0

    generation_window_seconds: float = 300.0
    generation_max_requests: int = 10
    chat_reply_window_seconds: float = 300.0
    chat_reply_max_requests: int = 30
    case_feedback_window_seconds: float = 300.0
    case_feedback_max_requests: int = 20
    investigation_report_window_seconds: float = 300.0
    investigation_report_max_requests: int = 20
    guidance_window_seconds: float = 300.0
    guidance_max_requests: int = 15
    payment_order_window_seconds: float = 900.0
    payment_order_max_requests: int = 5

    free_ceiling: int = 2
    premium_daily_ceiling: int = 50
    premium_period_days: int = 30
    quota_timezone: str = "UTC"
    recent_history_limit: int = 15

    catalog_path: Path = DEFAULT_CATALOG_PATH
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    generation_timeout_seconds: float = 60.0
    request_timeout_seconds: float = 30.0
    request_max_retries: int = 2

    razorpay_key_id: str | None = None
    razorpay_key_secret: str | None = None
    premium_price_paise: int = 30000
    premium_currency: str = "INR"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
