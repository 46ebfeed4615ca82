"""Shared fixtures for the vault test-suite."""
import pytest

from runavault.config import VaultConfig
from runavault.models import Principal
from runavault.service import SecretService
from runavault.storage import MemoryRecordStore


@pytest.fixture
def store():
    """Create an empty in-memory passwords table."""
    return MemoryRecordStore()


@pytest.fixture
def config():
    return VaultConfig()


@pytest.fixture
def service(store, config):
    return SecretService(store, config)


@pytest.fixture
def alice():
    """Owner of most secrets in the tests; member of no group."""
    return Principal(id="alice", groups=[])


@pytest.fixture
def bob():
    """Member of G1."""
    return Principal(id="bob", groups=["G1"])


@pytest.fixture
def carol():
    """Member of no group, shared with nothing by default."""
    return Principal(id="carol", groups=[])
