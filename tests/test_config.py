"""Tests for VaultConfig."""
import pytest
from pydantic import ValidationError

from runavault.config import VaultConfig


class TestVaultConfig:
    """Tests for configuration defaults and validation."""

    def test_defaults(self):
        """Test the default configuration."""
        config = VaultConfig()
        assert config.table_name == "RunaVault_passwords"
        assert config.group_index == "shared_with_groups-index"
        assert config.user_index == "shared_with_users-index"
        assert config.max_notes_length == 500
        assert config.storage_backend == "memory"

    def test_backend_is_lowercased(self):
        """Test backend names are lowercased."""
        assert VaultConfig(storage_backend="DynamoDB").storage_backend == "dynamodb"

    def test_unknown_backend(self):
        """Test an unknown backend."""
        with pytest.raises(ValidationError):
            VaultConfig(storage_backend="sqlite")

    def test_postgres_needs_dsn(self):
        """Test postgres requires a DSN."""
        with pytest.raises(ValidationError):
            VaultConfig(storage_backend="postgres")
        config = VaultConfig(storage_backend="postgres", database_dsn="postgres://localhost/vault")
        assert config.database_dsn == "postgres://localhost/vault"

    def test_prefix_without_whitespace(self):
        """Test the table prefix rejects whitespace."""
        with pytest.raises(ValidationError):
            VaultConfig(table_prefix="Runa Vault_")

    def test_notes_limit_positive(self):
        """Test the notes limit must be positive."""
        with pytest.raises(ValidationError):
            VaultConfig(max_notes_length=0)

    def test_jwks_url(self):
        """Test building the JWKS url."""
        config = VaultConfig(region="eu-west-1", user_pool_id="eu-west-1_abc")
        assert config.jwks_url == (
            "https://cognito-idp.eu-west-1.amazonaws.com/"
            "eu-west-1_abc/.well-known/jwks.json"
        )

    def test_jwks_url_requires_pool(self):
        """Test the JWKS url needs a user pool."""
        with pytest.raises(RuntimeError):
            VaultConfig().jwks_url

    def test_from_env(self, monkeypatch):
        """Test loading settings from the environment."""
        monkeypatch.setenv("TABLE_PREFIX", "Test_")
        monkeypatch.setenv("AWS_REGION", "us-east-1")
        monkeypatch.setenv("USER_POOL_ID", "us-east-1_pool")
        monkeypatch.setenv("USER_POOL_CLIENT_ID", "client")
        monkeypatch.setenv("VAULT_STORAGE_BACKEND", "dynamodb")
        monkeypatch.delenv("VAULT_DATABASE_DSN", raising=False)
        config = VaultConfig.from_env()
        assert config.table_name == "Test_passwords"
        assert config.region == "us-east-1"
        assert config.client_id == "client"
        assert config.storage_backend == "dynamodb"

    def test_from_env_defaults(self, monkeypatch):
        """Test environment defaults."""
        for name in (
            "TABLE_PREFIX", "AWS_REGION", "USER_POOL_ID", "USER_POOL_CLIENT_ID",
            "VAULT_STORAGE_BACKEND", "VAULT_DATABASE_DSN",
        ):
            monkeypatch.delenv(name, raising=False)
        config = VaultConfig.from_env()
        assert config.table_prefix == "RunaVault_"
        assert config.client_id is None
