"""
Application configuration using pydantic-settings.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""
    
    # Application
    app_name: str = "CDBridge"
    app_version: str = "1.0.0"
    debug: bool = False
    
    # Server
    host: str = "0.0.0.0"
    port: int = 8081
    
    # Database
    database_url: str = "sqlite+aiosqlite:///./data/cdbridge.db"
    
    # Inbound webhook verification
    github_webhook_secret: str = ""
    gitlab_webhook_token: str = ""
    
    # Default downstream credentials (used when no installation mapping applies)
    ddash_endpoint: str = ""
    ddash_auth_token: str = ""
    ddash_webhook_secret: str = ""
    default_environment: str = ""
    
    # Event sources
    github_source: str = "github/app"
    gitlab_source: str = "gitlab/webhook"
    
    # Setup handshake
    install_url: str = ""
    setup_token: str = ""
    setup_callback_path: str = "/setup/callback"
    setup_intent_ttl_minutes: int = 15
    
    # Publishing
    publish_timeout: float = 10.0  # seconds
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("setup_callback_path")
    @classmethod
    def _absolute_path(cls, value: str) -> str:
        value = value.strip() or "/setup/callback"
        return value if value.startswith("/") else "/" + value

    @field_validator("publish_timeout")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        return value if value > 0 else 10.0


# Global settings instance
settings = Settings()
