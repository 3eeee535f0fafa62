from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode


class Settings(BaseSettings):
    # WhatsApp Cloud API
    whatsapp_access_token: str
    whatsapp_phone_number_id: str
    whatsapp_verify_token: str
    whatsapp_app_secret: str = ""
    whatsapp_api_url: str = "https://graph.facebook.com/v22.0"
    whatsapp_max_message_length: int = 4096
    whatsapp_default_retry_after: float = 60.0
    whatsapp_max_rate_limit_reschedules: int = 3

    # Auto-enable: messages containing any of these phrases turn replies on
    auto_enable_phrases: Annotated[list[str], NoDecode] = []

    @field_validator("auto_enable_phrases", mode="before")
    @classmethod
    def parse_phrases(cls, v: object) -> object:
        if isinstance(v, str):
            return [p.strip() for p in v.split(",") if p.strip()]
        return v

    # AI backend
    ai_service_url: str = "http://localhost:8000/rag/query"
    ai_health_url: str = ""
    ai_system_message: str | None = None
    ai_timeout: float = 30.0
    ai_health_check_before_query: bool = False
    ai_fallback_message: str = (
        "Our assistant is temporarily unavailable. We'll get back to you shortly."
    )
    ai_startup_attempts: int = 5
    ai_startup_wait: float = 10.0  # multiplied by the attempt number

    # Circuit breaker
    breaker_failure_threshold: float = 0.5
    breaker_min_calls: int = 3
    breaker_window: float = 10.0
    breaker_buckets: int = 5
    breaker_reset_timeout: float = 30.0

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_startup_attempts: int = 5

    # Conversation history
    history_max_turns: int = 6  # 3 question/answer pairs
    history_ttl_seconds: int = 60 * 60 * 24 * 14

    # Debounce buffer
    buffer_quiet_period: float = 5.0

    # Enablement registry
    enablement_refresh_interval: int = 300
    enablement_refresh_attempts: int = 3
    enablement_refresh_backoff: float = 1.0

    # Pipeline: intake
    webhook_concurrency: int = 50
    webhook_max_attempts: int = 3
    webhook_backoff: float = 1.0

    # Pipeline: AI processing
    processing_concurrency: int = 20
    processing_max_attempts: int = 3
    processing_backoff: float = 1.0

    # Pipeline: delivery
    delivery_concurrency: int = 30
    delivery_max_attempts: int = 3
    delivery_backoff: float = 1.0
    apology_max_attempts: int = 2
    apology_backoff: float = 5.0
    apology_message: str = (
        "Sorry, we are having technical problems. Please try again later."
    )

    # Keep-alive ping against the AI backend (free-tier hosts sleep when idle)
    keep_alive_enabled: bool = False
    keep_alive_interval: int = 600

    # Logging
    log_level: str = "INFO"
    log_json: bool = True
    log_file: str = ""

    model_config = {"env_file": ".env"}

    @property
    def resolved_ai_health_url(self) -> str:
        if self.ai_health_url:
            return self.ai_health_url
        return self.ai_service_url.replace("/rag/query", "/health/ready")
