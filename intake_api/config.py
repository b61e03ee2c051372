"""Configuration for the lead-intake chat service."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from intake.classifier import OfficeHours
from intake.conversation import DiscoveryEngine
from intake.script import load_script


class Settings(BaseSettings):
    """Application settings loaded from the environment."""

    environment: str = Field(
        default="development",
        description="Name of the current environment (development, staging, production).",
    )
    log_level: str = Field(default="INFO", description="Root logging level.")

    script_path: Optional[Path] = Field(
        default=None,
        description="YAML discovery script. The built-in five-question script is used when unset.",
    )

    office_timezone: str = Field(
        default="Europe/Paris",
        description="IANA time zone the office hours are expressed in (Central European time).",
    )
    office_weekdays: str = Field(
        default="0,1,2,3,4",
        description="Comma-separated days with office hours, Monday=0 .. Sunday=6.",
    )
    office_open_hour: int = Field(default=9, ge=0, le=24)
    office_close_hour: int = Field(default=18, ge=0, le=24)

    response_delay_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Pause between a visitor message and the bot reply.",
    )
    sse_heartbeat_seconds: float = Field(default=20.0, gt=0)
    session_ttl_seconds: float = Field(
        default=1800.0,
        gt=0,
        description="Sessions without visitor activity for this long are closed and discarded.",
    )

    lead_webhook_url: HttpUrl | None = Field(
        default=None,
        description="Receives completed leads as JSON. Leads are only logged when unset.",
    )
    lead_webhook_token: Optional[str] = Field(default=None, description="Optional bearer token for the webhook.")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @field_validator("office_weekdays")
    @classmethod
    def _valid_weekdays(cls, v: str) -> str:
        days = [part.strip() for part in v.split(",") if part.strip()]
        if not all(day.isdigit() and 0 <= int(day) <= 6 for day in days):
            raise ValueError("office_weekdays must list day numbers 0-6, e.g. 0,1,2,3,4")
        return ",".join(days)

    def office_hours(self) -> OfficeHours:
        return OfficeHours(
            timezone=self.office_timezone,
            weekdays=frozenset(int(day) for day in self.office_weekdays.split(",") if day),
            open_hour=self.office_open_hour,
            close_hour=self.office_close_hour,
        )

    def build_engine(self) -> DiscoveryEngine:
        return DiscoveryEngine(load_script(self.script_path), self.office_hours())


@lru_cache
def get_settings() -> Settings:
    return Settings()
