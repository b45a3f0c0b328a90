from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    db_path: str = "/data/telehook.db"
    log_level: str = "INFO"
    log_format: str = "pretty"
    development: bool = False

    enable_webhook_logging: bool = True
    log_retention_days: int = 30
    log_cleanup_interval_hours: int = 1

    capture_ttl_seconds: int = 300
    capture_retention_seconds: int = 60
    capture_cleanup_interval_seconds: int = 60
    capture_url_format: str = "/api/payload/capture/{}"
    max_payload_bytes: int = 1024 * 1024
    max_payload_depth: int = 64

    telegram_api_base: str = "https://api.telegram.org"
    delivery_timeout_seconds: float = 10.0

    enable_failure_notifications: bool = False
    notification_bot_token: str | None = None
    notification_chat_id: str | None = None
    notification_topic_id: str | None = None
