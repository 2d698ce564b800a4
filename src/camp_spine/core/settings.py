"""Validated configuration for camp-spine.

All knobs the pipeline needs (thresholds, report window, admin recipients,
feature flags, backoff limits) live on one :class:`CampSpineSettings`
instance.  It is carried explicitly on
:class:`~camp_spine.ops.context.OperationContext` rather than being read
from the environment deep inside an operation, so tests and the scheduler
can inject exactly the configuration they want.

Examples:
    >>> from camp_spine.core.settings import CampSpineSettings
    >>> settings = CampSpineSettings(low_availability_threshold=2)
    >>> settings.feature_flags.availability_alerts
    True

Environment::

    CAMP_SPINE_DATABASE_PATH=/var/lib/camp-spine/camp.db
    CAMP_SPINE_ADMIN_EMAILS='["ops@example.com"]'
    CAMP_SPINE_FEATURE_FLAGS__DAILY_REPORT=false

Tags:
    settings, configuration, pydantic, environment, feature-flags, camp-spine
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeatureFlags(BaseModel):
    """Switches for the optional outbound behaviours."""

    availability_alerts: bool = True
    daily_report: bool = True
    winback_sequence: bool = True


class CampSpineSettings(BaseSettings):
    """camp-spine configuration.

    Fields
    ──────
    database_path                 : SQLite file used by the CLI
    log_level / json_logs         : structlog configuration
    low_availability_threshold    : spots-remaining threshold for alerts
    report_window_hours           : rolling window for the daily report
    admin_emails                  : daily report recipients
    report_from_email             : sender used for admin mail
    feature_flags                 : see :class:`FeatureFlags`
    default_scrape_frequency_hours: cadence for new sources
    rate_limit_retry_hours        : retry delay after a rate-limited scrape
    max_backoff_hours             : ceiling for exponential failure backoff
    dispatcher, smtp_*, webhook_url: outbound transport for the CLI
    """

    model_config = SettingsConfigDict(
        env_prefix="CAMP_SPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_path: Path = Field(
        default_factory=lambda: Path.home() / ".camp-spine" / "camp_spine.db",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Change detection ─────────────────────────────────────────
    low_availability_threshold: int = Field(default=5, ge=1)

    # ── Reporting ────────────────────────────────────────────────
    report_window_hours: int = Field(default=24, ge=1)
    admin_emails: list[str] = Field(default_factory=list)
    report_from_email: str = "reports@camp-spine.local"

    # ── Feature flags ────────────────────────────────────────────
    feature_flags: FeatureFlags = Field(default_factory=FeatureFlags)

    # ── Scheduling ───────────────────────────────────────────────
    default_scrape_frequency_hours: int = Field(default=24, ge=1)
    rate_limit_retry_hours: int = Field(default=6, ge=1)
    max_backoff_hours: int = Field(default=168, ge=1)

    # ── Dispatch ─────────────────────────────────────────────────
    dispatcher: Literal["console", "smtp", "webhook"] = "console"
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: SecretStr | None = None
    smtp_use_tls: bool = True
    webhook_url: str | None = None

    @model_validator(mode="after")
    def _check_dispatcher(self) -> CampSpineSettings:
        if self.dispatcher == "webhook" and not self.webhook_url:
            raise ValueError("webhook_url is required when dispatcher is 'webhook'")
        return self

    @field_validator("admin_emails")
    @classmethod
    def _normalize_emails(cls, value: list[str]) -> list[str]:
        return [email.strip().lower() for email in value if email.strip()]


_settings_cache: dict[str, CampSpineSettings] = {}


def get_settings(*, _force_reload: bool = False) -> CampSpineSettings:
    """Load, validate, and cache a :class:`CampSpineSettings` instance."""
    if _force_reload or "default" not in _settings_cache:
        _settings_cache["default"] = CampSpineSettings()
    return _settings_cache["default"]


def clear_settings_cache() -> None:
    _settings_cache.clear()
