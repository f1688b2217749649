from pydantic_settings import BaseSettings
from pydantic import BaseModel, field_validator
from typing import Optional, List, Union


class NotificationConfig(BaseModel):
    """Outbound Telegram channel settings handed to TelegramNotifier."""

    bot_token: Optional[str] = None
    api_base: str = "https://api.telegram.org"
    admin_chat_id: Optional[str] = None
    send_timeout_seconds: float = 10.0


class SchedulerConfig(BaseModel):
    """Trigger times and budgets for the scheduled notification jobs."""

    enabled: bool = True
    daily_reset_time: str = "00:00"
    expiry_check_time: str = "09:00"
    usage_check_interval_hours: int = 6
    job_timeout_seconds: float = 300.0
    notify_concurrency: int = 10
    send_timeout_seconds: float = 10.0
    expiry_warning_days: int = 3
    high_usage_percent: int = 80


class Settings(BaseSettings):
    # Database
    database_url: str

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_password: Optional[str] = None

    # Account locks: 'local' (in-process only) or 'redis' (local + distributed).
    # 'local' serializes one process only; use 'redis' whenever more than one
    # worker serves the same database.
    account_lock_backend: str = "local"
    lock_timeout_seconds: int = 10
    lock_block_seconds: int = 5

    # API
    api_v1_str: str = "/api/v1"
    admin_token: Optional[str] = None

    # Accounts
    default_daily_limit: int = 100
    trial_days: int = 30
    near_expiry_days: int = 3
    high_usage_percent: int = 80

    # Registration rate limiting (slowapi)
    rate_limit_enabled: bool = True
    register_rate_limit: str = "10/minute"

    # Telegram
    telegram_bot_token: Optional[str] = None
    telegram_api_base: str = "https://api.telegram.org"
    admin_chat_id: Optional[str] = None
    notification_timeout_seconds: float = 10.0
    notify_concurrency: int = 10

    # Scheduler
    scheduler_enabled: bool = True
    daily_reset_time: str = "00:00"
    expiry_check_time: str = "09:00"
    usage_check_interval_hours: int = 6
    job_timeout_seconds: float = 300.0

    # Environment
    environment: str = "development"
    debug: bool = False

    # CORS
    cors_origins: List[str] = ["http://localhost:5000"]

    @field_validator('cors_origins', mode='before')
    @classmethod
    def parse_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse CORS origins from environment variable (comma-separated) or use default list."""
        if isinstance(v, str):
            # Split by comma and strip whitespace
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @field_validator('account_lock_backend')
    @classmethod
    def validate_lock_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ('local', 'redis'):
            raise ValueError("account_lock_backend must be 'local' or 'redis'")
        return v

    def notification_config(self) -> NotificationConfig:
        return NotificationConfig(
            bot_token=self.telegram_bot_token or None,
            api_base=self.telegram_api_base,
            admin_chat_id=self.admin_chat_id or None,
            send_timeout_seconds=self.notification_timeout_seconds,
        )

    def scheduler_config(self) -> SchedulerConfig:
        return SchedulerConfig(
            enabled=self.scheduler_enabled,
            daily_reset_time=self.daily_reset_time,
            expiry_check_time=self.expiry_check_time,
            usage_check_interval_hours=self.usage_check_interval_hours,
            job_timeout_seconds=self.job_timeout_seconds,
            notify_concurrency=self.notify_concurrency,
            send_timeout_seconds=self.notification_timeout_seconds,
            expiry_warning_days=self.near_expiry_days,
            high_usage_percent=self.high_usage_percent,
        )

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Allow extra fields from environment


settings = Settings()
