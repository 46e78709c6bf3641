"""
Common Configuration
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CopySettings(BaseSettings):
    """
    Environment defaults for the copy command.

    Every value can be overridden by the matching CLI flag.
    """

    LOG_LEVEL: str = Field(default="INFO", description="Log level")
    LOG_FORMAT: str = Field(default="text", description="Log formatter (text or json)")
    CONCURRENCY: int = Field(default=5, description="Concurrent image transfers")

    # ===== Registry =====
    REGISTRY_USERNAME: str = Field(default="", description="Registry username")
    REGISTRY_PASSWORD: str = Field(default="", description="Registry password")
    REGISTRY_TOKEN: str = Field(default="", description="Registry bearer token")
    REGISTRY_ANON: bool = Field(default=False, description="Skip registry authentication")
    REGISTRY_INSECURE: bool = Field(default=False, description="Talk to registries over HTTP")
    REGISTRY_VERIFY_CERTS: bool = Field(
        default=True, description="Whether to verify registry TLS certificates"
    )
    REGISTRY_CA_CERT_PATH: str = Field(default="", description="CA bundle for registry TLS")
    REGISTRY_TIMEOUT: float = Field(default=60.0, description="Registry request timeout (s)")

    model_config = SettingsConfigDict(
        env_prefix="IMGCOPY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )
