from __future__ import annotations

from typing import Self

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env once at module import so every BaseSettings subclass sees the env vars
load_dotenv()


class SiteOptions(BaseModel):
    """Per-site remediation switches supplied alongside the filter lists."""

    refresh_vendor: bool = False  # inject the vendor refresh script after script errors
    run_local_scripts: bool = False  # re-run inline page scripts after script errors


class SidebarSettings(BaseSettings):
    """User preferences served by the ConfigStore. Env vars prefixed with ADSIDEBAR_."""

    model_config = SettingsConfigDict(env_prefix="ADSIDEBAR_")

    enabled: bool = True
    autohide_seconds: int = Field(0, ge=0)  # 0 = autohide disabled
    ad_scaling: bool = True
    site_options: dict[str, SiteOptions] = Field(default_factory=dict)  # keyed by hostname


class MonitorSettings(BaseSettings):
    """Readiness monitor timing. Env vars prefixed with MONITOR_.

    Durations are expressed in scheduler units; unit_seconds converts them
    to wall-clock time for the asyncio-backed timer.
    """

    model_config = SettingsConfigDict(env_prefix="MONITOR_")

    tick_units: int = 1000
    probe_timeout_units: int = 300
    max_cycles: int = 10
    min_visible_size: float = 15.0
    dynamic_debounce_units: int = 100
    unit_seconds: float = 0.001
    refresh_script_url: str = "adsidebar-resource://refreshgpt.js"

    @model_validator(mode="after")
    def _validate(self) -> Self:
        if self.tick_units <= 0:
            raise ValueError(f"tick_units must be > 0, got {self.tick_units}")
        if self.max_cycles <= 0:
            raise ValueError(f"max_cycles must be > 0, got {self.max_cycles}")
        if not (0 < self.probe_timeout_units < self.tick_units):
            raise ValueError(
                f"probe_timeout_units must be in (0, tick_units), got "
                f"{self.probe_timeout_units} (tick_units={self.tick_units})"
            )
        if self.dynamic_debounce_units < 0:
            raise ValueError(
                f"dynamic_debounce_units must be >= 0, got {self.dynamic_debounce_units}"
            )
        if self.unit_seconds <= 0:
            raise ValueError(f"unit_seconds must be > 0, got {self.unit_seconds}")
        return self


class GatewaySettings(BaseSettings):
    """Headless host gateway settings. Env vars prefixed with GATEWAY_."""

    model_config = SettingsConfigDict(env_prefix="GATEWAY_")

    host: str = "127.0.0.1"
    port: int = 19790


class LogSettings(BaseSettings):
    """Log output settings. Env vars prefixed with LOG_."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = "INFO"
    json_output: bool = False

    @model_validator(mode="after")
    def _validate_level(self) -> Self:
        if self.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"LOG_LEVEL must be a standard level name, got {self.level!r}")
        return self


class Settings(BaseSettings):
    """Root settings composing all sub-configurations."""

    model_config = SettingsConfigDict(extra="ignore")

    sidebar: SidebarSettings = Field(default_factory=SidebarSettings)
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    log: LogSettings = Field(default_factory=LogSettings)


def get_settings() -> Settings:
    """Load and validate settings. Raises ValidationError on invalid values."""
    return Settings()
