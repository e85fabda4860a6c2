"""Application configuration and settings."""

import json
from typing import Annotated, List, Optional, Union

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode


class Settings(BaseSettings):
    """Application settings."""

    # Service Configuration
    service_name: str = Field(default="renewal-reminder-orchestrator")
    service_version: str = Field(default="1.0.0")
    port: int = Field(default=8000)
    host: str = Field(default="::")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    environment: str = Field(default="development")

    # Storage
    storage_backend: str = Field(default="memory")  # memory | supabase
    supabase_url: Optional[str] = Field(default=None)
    supabase_key: Optional[str] = Field(default=None)

    # WhatsApp Cloud API
    whatsapp_api_token: Optional[str] = Field(default=None)
    whatsapp_phone_id: Optional[str] = Field(default=None)
    whatsapp_api_base_url: str = Field(default="https://graph.facebook.com")
    whatsapp_api_version: str = Field(default="v17.0")
    whatsapp_business_number: str = Field(default="33767668396")
    whatsapp_template_language: str = Field(default="en")
    whatsapp_verify_token: Optional[str] = Field(default=None)
    whatsapp_timeout_seconds: float = Field(default=30.0)

    # Templates
    default_reminder_template: str = Field(default="rappel_visite_technique_vf")
    default_center_network: str = Field(default="AUTOSUR")
    default_center_label: str = Field(default="Notre centre")
    followup_template: str = Field(default="assistance_rdv")
    followup_template_language: str = Field(default="fr")

    # Workflow Rules
    send_delay_seconds: float = Field(default=1.5)
    import_grace_minutes: int = Field(default=30)
    followup_min_dwell_hours: float = Field(default=2.0)
    timezone: str = Field(default="Europe/Paris")
    business_hour_start: int = Field(default=9)
    business_hour_end: int = Field(default=17)
    business_days: Annotated[List[int], NoDecode] = Field(default=[0, 1, 2, 3, 4])

    # Triggers
    cron_secret: Optional[str] = Field(default=None)
    catch_up_enabled: bool = Field(default=False)

    # Notifications
    notification_backend: str = Field(default="memory")  # memory | supabase | http
    notification_service_url: Optional[str] = Field(default=None)
    notification_timeout_seconds: float = Field(default=10.0)
    notification_admin_roles: Annotated[List[str], NoDecode] = Field(default=["admin", "superadmin"])

    # Circuit Breaker / Retry Configuration
    circuit_breaker_failure_threshold: int = Field(default=5)
    circuit_breaker_timeout_seconds: int = Field(default=60)
    read_retry_max_attempts: int = Field(default=3)

    @field_validator("business_days", "notification_admin_roles", mode="before")
    @classmethod
    def split_comma_separated(cls, v: Union[str, List]) -> Union[List, str]:
        if isinstance(v, str):
            if v.strip().startswith("["):
                return json.loads(v)
            return [i.strip() for i in v.split(",") if i.strip()]
        return v

    @field_validator("business_days")
    @classmethod
    def validate_business_days(cls, v: List[int]) -> List[int]:
        if any(int(day) < 0 or int(day) > 6 for day in v):
            raise ValueError("Business days must be weekday numbers between 0 (Monday) and 6 (Sunday)")
        return [int(day) for day in v]

    @field_validator("send_delay_seconds", "followup_min_dwell_hours")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Delays must not be negative")
        return v

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        if v not in ("memory", "supabase"):
            raise ValueError("storage_backend must be 'memory' or 'supabase'")
        return v

    @field_validator("notification_backend")
    @classmethod
    def validate_notification_backend(cls, v: str) -> str:
        if v not in ("memory", "supabase", "http"):
            raise ValueError("notification_backend must be 'memory', 'supabase' or 'http'")
        return v

    @model_validator(mode="after")
    def validate_business_hours(self) -> "Settings":
        if not 0 <= self.business_hour_start < self.business_hour_end <= 24:
            raise ValueError("Business hours must satisfy 0 <= start < end <= 24")
        return self

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
    }


def get_settings() -> Settings:
    """Get application settings."""
    return Settings()
