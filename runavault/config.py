"""
Vault Configuration — Table naming, identity provider and limits.

Reads settings from environment variables:
    TABLE_PREFIX = <prefix for the passwords table, default "RunaVault_">
    AWS_REGION = <region of the table and the user pool>
    USER_POOL_ID = <Cognito user pool id>
    USER_POOL_CLIENT_ID = <expected token audience, optional>
    VAULT_STORAGE_BACKEND = memory | dynamodb | postgres
    VAULT_DATABASE_DSN = <postgres dsn, postgres backend only>

Components never read the environment themselves; build one
:class:`VaultConfig` and pass it in.
"""
import os
import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger("runavault")

_BACKENDS = ("memory", "dynamodb", "postgres")


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    table_prefix: str = Field(default="RunaVault_")
    group_index: str = Field(default="shared_with_groups-index")
    user_index: str = Field(default="shared_with_users-index")
    max_notes_length: int = Field(default=500, ge=1)
    region: Optional[str] = None
    user_pool_id: Optional[str] = None
    client_id: Optional[str] = None
    storage_backend: str = Field(default="memory")
    database_dsn: Optional[str] = None

    @field_validator("storage_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate storage backend is supported."""
        v = v.lower()
        if v not in _BACKENDS:
            raise ValueError(f"Unsupported storage backend: {v}")
        return v

    @field_validator("table_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        if any(ch.isspace() for ch in v):
            raise ValueError("table_prefix cannot contain whitespace")
        return v

    @model_validator(mode="after")
    def validate_backend_settings(self) -> "VaultConfig":
        """Ensure the selected backend has what it needs."""
        if self.storage_backend == "postgres" and not self.database_dsn:
            raise ValueError("database_dsn is required for the postgres backend")
        return self

    @property
    def table_name(self) -> str:
        return f"{self.table_prefix}passwords"

    @property
    def jwks_url(self) -> str:
        """Return the JWKS endpoint of the configured user pool.

        Raises:
            RuntimeError: If region or user_pool_id is not configured.
        """
        if not self.region or not self.user_pool_id:
            raise RuntimeError(
                "AWS_REGION and USER_POOL_ID must be set to verify tokens"
            )
        return (
            f"https://cognito-idp.{self.region}.amazonaws.com/"
            f"{self.user_pool_id}/.well-known/jwks.json"
        )

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        config = cls(
            table_prefix=os.environ.get("TABLE_PREFIX", "RunaVault_"),
            region=os.environ.get("AWS_REGION"),
            user_pool_id=os.environ.get("USER_POOL_ID"),
            client_id=os.environ.get("USER_POOL_CLIENT_ID") or None,
            storage_backend=os.environ.get("VAULT_STORAGE_BACKEND", "memory"),
            database_dsn=os.environ.get("VAULT_DATABASE_DSN") or None,
        )
        logger.debug(
            "Vault config loaded: table=%s backend=%s",
            config.table_name, config.storage_backend,
        )
        return config
