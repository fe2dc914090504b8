"""Configuration schema using Pydantic."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerConfig(BaseModel):
    """Timer scheduler and reconciliation poller configuration."""

    poll_interval_s: float = Field(default=20.0, gt=0)  # Reconciliation cadence
    due_window_s: float = Field(default=60.0, ge=0)  # +/- window treated as "due now"
    horizon_s: float = Field(default=24 * 60 * 60, gt=0)  # Max armed wake-up distance
    send_timeout_s: float = Field(default=30.0, gt=0)  # Bound on a single gateway send
    deliver_missed: bool = True  # Fire reminders that came due while the process was down


class RemindersConfig(BaseModel):
    """Creation-time validation and delivery template configuration.

    DESIGN: strict_repeat defaults to False so unknown repeat values are
    normalized to "none". max_ahead_days=None leaves
    the scheduling distance unbounded.
    """

    past_tolerance_s: float = Field(default=60.0, ge=0)
    max_ahead_days: int | None = Field(default=None, ge=1)
    strict_repeat: bool = False
    timezone: str = "UTC"  # Wall clock used for daily/weekly arithmetic
    sender_name: str = "ClientPulse"


class StorageConfig(BaseModel):
    """Reminder store configuration."""

    backend: Literal["json", "memory"] = "json"
    path: str = ""  # Empty → <data dir>/store.json


class SmtpConfig(BaseModel):
    """SMTP transport configuration."""

    enabled: bool = False
    host: str = "localhost"
    port: int = 587
    username: str = ""
    password: str = ""
    from_email: str = ""
    use_tls: bool = True  # STARTTLS after connect
    timeout: float = 20.0


class WebhookConfig(BaseModel):
    """HTTP mail relay configuration (JSON POST per message)."""

    enabled: bool = False
    url: str = ""
    token: str = ""  # Sent as a Bearer token when set
    timeout: float = 20.0


class MailConfig(BaseModel):
    """Outbound mail configuration. Console delivery is used when nothing is enabled."""

    model_config = ConfigDict(extra="ignore")

    smtp: SmtpConfig = Field(default_factory=SmtpConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)


class Config(BaseSettings):
    """Root configuration for clientpulse."""

    model_config = SettingsConfigDict(env_prefix="CLIENTPULSE_", env_nested_delimiter="__")

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    reminders: RemindersConfig = Field(default_factory=RemindersConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    mail: MailConfig = Field(default_factory=MailConfig)

    @property
    def active_transport(self) -> str:
        """Name of the delivery transport that will be used."""
        if self.mail.smtp.enabled:
            return "smtp"
        if self.mail.webhook.enabled and self.mail.webhook.url:
            return "webhook"
        return "console"
