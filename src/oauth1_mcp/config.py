"""Configuration management using pydantic-settings."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """OAuth1 client settings."""

    model_config = SettingsConfigDict(
        env_prefix="OAUTH1_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # OAuth1 consumer credentials
    consumer_key: str = ""
    consumer_secret: str = ""

    # API endpoints; the token endpoints hang off the base URL unless overridden
    api_base_url: str = ""
    request_token_url: str | None = None
    access_token_url: str | None = None
    authorization_url: str | None = None

    # Signing
    signature_method: Literal["HMAC-SHA1", "RSA-SHA1", "PLAINTEXT"] = "HMAC-SHA1"
    http_method: Literal["GET", "POST"] = "GET"
    realm: str = ""
    rsa_private_key_path: str | None = None
    sign_access_request_with_token_secret: bool = False

    # Provider-specific request token extensions
    application_display_name: str = ""
    application_scope: str = ""

    # Credential storage
    api_name: str = "GENERIC"
    credentials_path: str = "~/.config/oauth1-mcp/credentials.json"

    # Verifier callback listener
    callback_server_enabled: bool = True
    callback_server_host: str = "127.0.0.1"
    callback_server_doc_root: str = "VerifierCallbackServer/"
    launch_browser: bool = True

    # Transport
    ca_bundle_path: str | None = None
    http_timeout: float = 30.0

    # Host loop
    tick_interval: float = 1.0

    log_level: str = "INFO"


def get_settings() -> Settings:
    """Get application settings."""
    return Settings()
