"""Application settings using Pydantic Settings for configuration management."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Application
    app_name: str = "CommSync"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Owner of this engine instance (one canonical store per user)
    user_id: str = "default"

    # SQLite (accounts, subscriptions, client cache, SMS inbox)
    sqlite_path: str = "/app/data/commsync.db"

    # Credential vault
    vault_key: SecretStr | None = None
    vault_key_path: str = "/app/data/vault.key"

    # Sync scheduling
    sync_interval_seconds: float = 300.0
    provider_sync_intervals: dict[str, float] = Field(
        default_factory=lambda: {"sms-A": 120.0, "sms-B": 60.0, "discord": 120.0}
    )
    sync_overlap_seconds: float = 300.0
    page_size: int = 50
    bulk_page_size: int = 500
    bulk_max_pages: int = 20

    # Timeouts
    connection_test_timeout: float = 10.0
    fetch_timeout: float = 60.0
    provider_fetch_timeouts: dict[str, float] = Field(
        default_factory=lambda: {"imap": 120.0, "whatsapp": 90.0}
    )
    http_timeout: float = 30.0

    # Content completion
    content_batch_size: int = 5

    # Usage accounting
    usage_cache_ttl: float = 10.0

    # Search
    contact_match_threshold: float = 0.7
    message_match_threshold: float = 0.7

    # Webhooks
    webhook_secret: SecretStr | None = None

    # Provider endpoints
    gmail_api_base: str = "https://gmail.googleapis.com/gmail/v1"
    discord_api_base: str = "https://discord.com/api/v10"
    unipile_dsn: str | None = None
    unipile_access_token: SecretStr | None = None
    justcall_api_base: str = "https://api.justcall.io/v2.1"
    bulkvs_api_base: str = "https://portal.bulkvs.com/api/v1.0"

    # LLM (OpenAI-compatible endpoint for AI actions)
    llm_base_url: str = "http://localhost:8000/v1"
    llm_model_name: str = "gpt-oss-20b"
    llm_api_key: SecretStr | None = None

    @computed_field
    @property
    def unipile_base_url(self) -> str | None:
        """Construct the WhatsApp bridge base URL from its DSN."""
        if not self.unipile_dsn:
            return None
        dsn = self.unipile_dsn.rstrip("/")
        if not dsn.startswith("http"):
            dsn = f"https://{dsn}"
        return f"{dsn}/api/v1"

    def interval_for(self, provider_type: str) -> float:
        return self.provider_sync_intervals.get(provider_type, self.sync_interval_seconds)

    def fetch_timeout_for(self, provider_type: str) -> float:
        return self.provider_fetch_timeouts.get(provider_type, self.fetch_timeout)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
