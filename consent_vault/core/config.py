# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
ConsentVault Configuration — Environment-driven settings.

All configuration is loaded from environment variables (or .env file).
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class VaultSettings(BaseSettings):
    """Store-wide configuration loaded from environment."""

    # --- Redis ---
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )
    REDIS_MAX_CONNECTIONS: int = Field(default=20)
    REDIS_CONNECT_TIMEOUT: float = Field(default=5.0)
    REDIS_SOCKET_TIMEOUT: float = Field(default=10.0)
    REDIS_RETRIES: int = Field(
        default=3,
        description="Backoff retries on transient connection errors",
    )

    # --- Tenant partitions ---
    TENANT_PARTITION_PREFIX: str = Field(
        default="tenant_db_",
        description="Prefix prepended to a tenant id to build its partition name",
    )
    SHARED_PARTITION: str = Field(
        default="consent_shared",
        description="Partition for tenant-independent documents (e.g. key material)",
    )
    PARTITION_CATALOG_KEY: str = Field(
        default="consent_vault:partitions",
        description="Redis set listing every provisioned partition",
    )

    # --- Versioning ---
    VERSION_CLAIM_TTL: int = Field(
        default=60,
        description="Seconds a next-version claim token lives before it can be re-claimed",
    )
    STORE_TIMEOUT: float = Field(
        default=5.0,
        description="Default deadline in seconds for a single store operation",
    )
    TEMPLATE_MAX_VERSIONS_PER_HOUR: int = Field(default=5)
    TEMPLATE_RACE_WINDOW_SECONDS: int = Field(default=120)
    CONSENT_MAX_VERSIONS_PER_DAY: int = Field(default=3)
    CONSENT_RACE_WINDOW_SECONDS: int = Field(default=300)
    RACE_MAX_RECENT_VERSIONS: int = Field(
        default=2,
        description="More than this many versions inside the race window aborts the write",
    )

    # --- Consent handles ---
    HANDLE_EXPIRY_MINUTES: int = Field(
        default=15,
        description="Lifetime of a consent handle in minutes",
    )

    # --- Expiry sweep ---
    EXPIRY_SWEEP_ENABLED: bool = Field(default=True)
    EXPIRY_SWEEP_CRON: str = Field(
        default="0 0 0 * * *",
        description="6-field cron (seconds first); default once daily at midnight",
    )

    # --- Platform ---
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json", description="json | text")
    VAULT_ENV: str = Field(
        default="dev",
        description="Environment: dev | prod",
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
    }


# Global singleton
settings = VaultSettings()
