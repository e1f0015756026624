"""Configuration via pydantic-settings with .env support."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncSettings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="COSENSE_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Key-value store
    database_path: Path = Path("data/cosense_mail_sync.db")

    # Gmail API settings
    gmail_query: str = "label:cosense"
    max_results_per_page: int = 500
    batch_limit: int = 50

    # Google OAuth client used to refresh stored access tokens
    google_client_id: str = ""
    google_client_secret: str = ""

    # Credential-at-rest encryption
    token_encryption_key: str = ""

    # Cosense
    cosense_base_url: str = "https://scrapbox.io"
    page_title_prefix: str = "(📮Email) | "
    page_footer_tag: str = "#Eメールからの自動インポート"
    gmail_link_template: str = "https://mail.google.com/mail/u/0/#inbox/{message_id}"
    http_timeout_seconds: float = 30.0

    # Notification
    notification_webhook_url: str | None = None

    # Rate limiting & retry
    max_retries: int = 5
    initial_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 60.0
    num_retries: int = 3
    inter_page_delay_seconds: float = 0.2
    inter_message_delay_seconds: float = 1.0
    reconcile_delay_seconds: float = 0.2

    # Logging
    log_level: str = "INFO"

    def ensure_directories(self) -> None:
        """Create the data directory if it doesn't exist."""
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
