"""
Tests for the fan-out writer.

Tests cover:
- Row materialisation and the returned view
- Conditional put conflicts, strict and tolerated
- Replace keys
- Partial failures on write and delete
"""
import pytest

from runavault.codec import encode
from runavault.exceptions import DuplicateSecret, StorageError
from runavault.models import Distribution, LogicalSecret
from runavault.storage import MemoryRecordStore
from runavault.writer import FanoutWriter


# --- Test Fixtures ---

class FlakyStore(MemoryRecordStore):
    """Fails writes and deletes of sort keys ending with a given suffix."""

    def __init__(self, suffix: str):
        super().__init__()
        self.suffix = suffix

    async def put(self, record, replace=False):
        if record.sort_key.endswith(self.suffix):
            raise StorageError("simulated put failure")
        await super().put(record, replace=replace)

    async def delete(self, owner_id, sort_key):
        if sort_key.endswith(self.suffix):
            raise StorageError("simulated delete failure")
        await super().delete(owner_id, sort_key)


@pytest.fixture
def writer(store):
    return FanoutWriter(store)


@pytest.fixture
def secret():
    return LogicalSecret(
        owner_id="alice",
        site="a.com#p1",
        password_id="p1",
        username="alice@a.com",
        payload="cipher",
    )


# --- Writes ---

class TestWrite:
    """Tests for FanoutWriter.write."""

    async def test_writes_every_slot(self, store, writer, secret):
        """Test writing every recipient slot."""
        distribution = Distribution(groups=["G1"], users=["bob", "carol"])
        await writer.write(secret, distribution)
        assert len(store) == 3
        assert [item["site"] for item in store.items()] == [
            "a.com#p1#group:G1",
            "a.com#p1#user:bob",
            "a.com#p1#user:carol",
        ]

    async def test_returns_view_with_distribution(self, writer, secret):
        """Test the returned view."""
        distribution = Distribution(groups=["G1"], roles={"G1": "editor"})
        view = await writer.write(secret, distribution)
        assert view.site == "a.com#p1"
        assert view.shared_with == distribution
        assert view.owner_id == "alice"

    async def test_conflict_is_duplicate(self, writer, secret):
        """Test a conflict raises a duplicate error."""
        await writer.write(secret, Distribution())
        with pytest.raises(DuplicateSecret) as exc:
            await writer.write(secret, Distribution())
        assert exc.value.owner_id == "alice"

    async def test_conflict_tolerated(self, store, writer, secret):
        """Test a tolerated conflict."""
        await writer.write(secret, Distribution())
        await writer.write(secret, Distribution(), tolerate_conflicts=True)
        assert len(store) == 2

    async def test_replace_keys_overwrite(self, store, writer, secret):
        """Test replace keys overwrite rows."""
        await writer.write(secret, Distribution())
        keys = {item["site"] for item in store.items()}
        updated = secret.model_copy(update={"payload": "new-cipher", "version": 2})
        await writer.write(updated, Distribution(), replace_keys=keys)
        rows = await store.query("alice")
        assert {row.payload for row in rows} == {"new-cipher"}
        assert {row.version for row in rows} == {2}

    async def test_partial_failure_raises_after_all_attempts(self, secret):
        """Test a partial failure raises after every attempt."""
        store = FlakyStore("#user:bob")
        writer = FanoutWriter(store)
        with pytest.raises(StorageError):
            await writer.write(secret, Distribution(groups=["G1"], users=["bob"]))
        # the other row was still written
        assert [item["site"] for item in store.items()] == ["a.com#p1#group:G1"]


# --- Deletes ---

class TestDelete:
    """Tests for FanoutWriter.delete."""

    async def test_delete_counts_rows(self, store, writer, secret):
        """Test counting deleted rows."""
        await writer.write(secret, Distribution(users=["bob"]))
        rows = await store.query("alice")
        assert await writer.delete(rows) == 2
        assert len(store) == 0

    async def test_strict_delete_raises(self, secret):
        """Test a strict delete raises."""
        store = FlakyStore("#user:NONE")
        records = encode(secret, Distribution(groups=["G1"]))
        await store.put(records[0])
        with pytest.raises(StorageError):
            await FanoutWriter(store).delete(records)

    async def test_lenient_delete_counts_successes(self, secret):
        """Test a lenient delete counts successes."""
        store = FlakyStore("#user:NONE")
        records = encode(secret, Distribution(groups=["G1"]))
        await store.put(records[0])
        deleted = await FanoutWriter(store).delete(records, strict=False)
        assert deleted == 1
        assert len(store) == 0
