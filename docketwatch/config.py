"""Configuration management for DocketWatch."""

from typing import List, Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_file: str = Field(default="docketwatch.db")
    database_url: Optional[str] = Field(default=None)  # Postgres for production

    # FCC ECFS source API
    ecfs_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("ECFS_API_KEY", "FCC_API_KEY"),
    )
    ecfs_base_url: str = Field(default="https://publicapi.fcc.gov/ecfs/filings")
    http_timeout_seconds: float = Field(default=30.0)

    # Change detection
    targeted_fetch_size: int = Field(default=7)
    fallback_fetch_size: int = Field(default=10)
    docket_delay_seconds: float = Field(default=1.0)
    manual_max_filings: int = Field(default=50)

    # Document text extraction (Jina reader)
    jina_api_key: Optional[str] = Field(default=None)
    jina_base_url: str = Field(default="https://r.jina.ai")
    extraction_stream_timeout: float = Field(default=30.0)
    extraction_simple_timeout: float = Field(default=20.0)
    extraction_basic_timeout: float = Field(default=15.0)
    extraction_stream_min_chars: int = Field(default=100)
    extraction_simple_min_chars: int = Field(default=50)
    extraction_basic_min_chars: int = Field(default=20)

    # AI summarization (Gemini)
    gemini_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    )
    gemini_model: str = Field(default="gemini-1.5-flash")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta"
    )
    prompt_char_budget: int = Field(default=8000)
    breaker_failure_threshold: int = Field(default=3)
    breaker_cooldown_seconds: float = Field(default=300.0)

    # Enrichment worker pool
    enrichment_max_workers: int = Field(default=2)
    enrichment_dispatch_delay_seconds: float = Field(default=1.0)

    # Delivery scheduling
    timezone: str = Field(default="America/New_York")
    daily_send_hour: int = Field(default=13)
    weekly_send_weekday: int = Field(default=0)  # Monday
    weekly_send_hour: int = Field(default=9)
    queue_page_size: int = Field(default=100)
    claim_timeout_minutes: int = Field(default=15)

    # Fan-out safety limits
    max_notifications_per_run: int = Field(default=100)
    max_dockets_per_user: int = Field(default=10)
    max_filings_per_notification: int = Field(default=25)

    # Email delivery
    email_provider: Literal["resend", "smtp"] = Field(
        default="resend",
        validation_alias=AliasChoices("EMAIL_PROVIDER", "NOTIFIER_TYPE"),
    )
    resend_api_key: Optional[str] = Field(default=None)
    resend_api_url: str = Field(default="https://api.resend.com/emails")
    smtp_host: Optional[str] = Field(default=None)
    smtp_port: int = Field(default=587)
    smtp_username: Optional[str] = Field(default=None)
    smtp_password: Optional[str] = Field(default=None)
    smtp_use_tls: bool = Field(default=True)
    email_from_address: Optional[str] = Field(default=None)
    brand_name: str = Field(default="DocketWatch")
    app_url: str = Field(default="https://docketwatch.example.com")
    free_preview_chars: int = Field(default=70)

    # Bot Configuration
    log_level: str = Field(default="INFO")
    dry_run: bool = Field(default=False)
    log_json: bool = Field(default=False, description="Emit logs as JSON lines")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def missing_credentials(self) -> List[str]:
        """Return the environment keys required for a run that are unset."""
        required = {
            "ECFS_API_KEY": self.ecfs_api_key,
            "EMAIL_FROM_ADDRESS": self.email_from_address,
        }
        if self.email_provider == "resend":
            required["RESEND_API_KEY"] = self.resend_api_key
        else:
            required["SMTP_HOST"] = self.smtp_host

        return [key for key, value in required.items() if not value]

    def validate_required_credentials(self) -> None:
        """Raise ValueError when credentials needed at startup are missing."""
        missing = self.missing_credentials()
        if missing:
            raise ValueError(
                "DocketWatch misconfigured; missing: " + ", ".join(missing)
            )

    @property
    def summarization_enabled(self) -> bool:
        """Whether the AI summarization provider is configured."""
        return bool(self.gemini_api_key)


# Global settings instance
settings = Settings()
