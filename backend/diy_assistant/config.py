from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {
        "env_file": ".env",
        "extra": "ignore",
        "env_prefix": "",
        "case_sensitive": False,
    }

    # Assistant provider
    openai_api_key: str = ""
    openai_assistant_id: str = ""
    openai_base_url: str | None = None
    openai_timeout_seconds: float = 30.0

    # "auto" picks mock when no API key is configured
    assistant_mode: Literal["auto", "mock", "live"] = "auto"
    assistant_auto_provision: bool = False
    assistant_name: str = "DIY Construction Assistant"
    assistant_model: str = "gpt-4o-mini"
    verify_assistant_on_startup: bool = True

    # Affiliate links
    affiliate_tag: str = "diyassistant-20"
    affiliate_base_url: str = "https://www.amazon.com/s"

    # Run polling
    poll_max_attempts: int = 10
    poll_strategy: Literal["fixed", "exponential"] = "exponential"
    poll_interval_seconds: float = 1.0
    poll_initial_delay_seconds: float = 0.3
    poll_backoff_factor: float = 1.5
    poll_max_delay_seconds: float = 1.0
    resume_poll_attempts: int = 1

    # Mock provider: in-progress observations before a run completes
    mock_run_steps: int = 1

    # App
    environment: str = "development"
    log_level: str = "INFO"
    log_file: str = ""


settings = Settings()
