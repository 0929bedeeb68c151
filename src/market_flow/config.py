"""Configuration loading from config.yaml + .env."""

from pathlib import Path

import yaml
from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings

from .models import ScheduleConfig


# ---------------------------------------------------------------------------
# Config sub-models (loaded from config.yaml)
# ---------------------------------------------------------------------------

class LlmConfig(BaseModel):
    model: str = "google/gemini-2.5-flash"  # OpenRouter model ID
    base_url: str = "https://openrouter.ai/api/v1"
    web_search: bool = True  # OpenRouter web plugin，让模型自行检索实时来源
    timeout: float = 120.0  # seconds; a hanging call becomes a FAILED report
    temperature: float = 0.3
    language: str = "Traditional Chinese (繁體中文)"
    dedupe_sources: bool = False
    # Optional prompt overrides; str.format with {now} and {language}
    morning_prompt: str = ""
    evening_prompt: str = ""


class EmailConfig(BaseModel):
    """EmailJS delivery config / 邮件投递配置."""

    api_url: str = "https://api.emailjs.com/api/v1.0/email/send"
    timeout: float = 10.0


class StorageConfig(BaseModel):
    path: str = "data/store.json"


class SchedulerConfig(BaseModel):
    interval: float = 2.0  # tick interval in seconds, must stay below 60
    log_capacity: int = 500
    feed_capacity: int = 50

    @field_validator("interval")
    @classmethod
    def _check_interval(cls, value: float) -> float:
        if not 0 < value < 60:
            raise ValueError("scheduler.interval must be between 0 and 60 seconds")
        return value


class OutputConfig(BaseModel):
    dir: str = "output"


class AppConfig(BaseModel):
    """Application config loaded from config.yaml."""

    llm: LlmConfig = LlmConfig()
    schedule: ScheduleConfig = ScheduleConfig()
    email: EmailConfig = EmailConfig()
    storage: StorageConfig = StorageConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    output: OutputConfig = OutputConfig()


# ---------------------------------------------------------------------------
# Secrets (loaded from .env / environment variables)
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    """Secret settings loaded from environment / .env file."""

    openrouter_api_key: str = ""
    emailjs_service_id: str = ""
    emailjs_template_id: str = ""
    emailjs_public_key: str = ""
    emailjs_private_key: str = ""  # optional access token for server-side calls

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def emailjs_configured(self) -> bool:
        return bool(
            self.emailjs_service_id and self.emailjs_template_id and self.emailjs_public_key
        )


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(config_path: str = "config.yaml") -> tuple[AppConfig, Settings]:
    """Load app config from YAML and secrets from .env."""
    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        app_config = AppConfig(**data)
    else:
        app_config = AppConfig()

    settings = Settings()
    return app_config, settings
