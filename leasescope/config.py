"""Pydantic settings for LeaseScope configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_yaml_config() -> dict[str, Any]:
    """Load config from ~/.leasescope/config.yaml, falling back to project config.yaml."""
    user_cfg = Path.home() / ".leasescope" / "config.yaml"
    if user_cfg.exists():
        with open(user_cfg) as f:
            return yaml.safe_load(f) or {}
    project_cfg = Path(__file__).parent.parent / "config.yaml"
    if project_cfg.exists():
        with open(project_cfg) as f:
            return yaml.safe_load(f) or {}
    return {}


class Settings(BaseSettings):
    """LeaseScope application settings.

    Priority (highest → lowest): environment variables → config.yaml → defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEASESCOPE_",
        env_nested_delimiter="__",
    )

    # Sources
    hosts_path: str | None = "/var/dhcpd/etc/dhcpd.conf"
    leases_path: str | None = "/var/dhcpd/var/db/dhcpd.leases"

    # Reload
    debounce_ms: int = Field(300, ge=0)
    watch_poll_interval: float = Field(0.0, ge=0)
    watch_retry_initial: float = Field(0.5, gt=0)
    watch_retry_max: float = Field(30.0, gt=0)
    watch_retry_attempts: int = Field(8, ge=0)

    # Enrichment
    enrich: bool = True
    vendor_timeout: float = Field(1.0, gt=0)
    probe_timeout: float = Field(1.0, gt=0)
    probe_enabled: bool = False
    max_concurrent_enrichment: int = Field(20, ge=1)
    vendor_db_path: str | None = None
    vendor_db_url: str | None = None
    vendor_cache_days: float = 7.0

    # API
    api_host: str = "127.0.0.1"
    api_port: int = 16768

    # Logging
    log_level: str = "INFO"

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        yaml_values = _load_yaml_config()
        # YAML values serve as defaults; explicit env/init values take priority
        merged = {**yaml_values, **{k: v for k, v in values.items() if v is not None}}
        return merged

    @property
    def debounce(self) -> float:
        return self.debounce_ms / 1000

    @property
    def resolved_hosts_path(self) -> Path | None:
        return Path(self.hosts_path).expanduser() if self.hosts_path else None

    @property
    def resolved_leases_path(self) -> Path | None:
        return Path(self.leases_path).expanduser() if self.leases_path else None

    @property
    def resolved_vendor_db_path(self) -> Path | None:
        if self.vendor_db_path:
            return Path(self.vendor_db_path).expanduser()
        if self.vendor_db_url:
            return Path.home() / ".leasescope" / "manuf"
        return None


def get_settings(**overrides: Any) -> Settings:
    """Create a Settings instance, optionally with overrides."""
    return Settings(**overrides)
