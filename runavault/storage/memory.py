"""In-memory passwords table for development and testing."""
import copy
from typing import Any, Optional

from ..codec import record_from_item, record_to_item
from ..exceptions import ConditionalPutFailed
from ..models import SENTINEL, DistributionRecord, same_subdirectory
from .base import RecordStore


class MemoryRecordStore(RecordStore):
    """Dict-backed table with brute-force index scans.

    Items are kept in their serialised table form so index lookups behave
    like the real table, sentinels included. Data is not persisted across
    restarts.
    """

    def __init__(self) -> None:
        self._items: dict[tuple[str, str], dict[str, Any]] = {}

    def __len__(self) -> int:
        return len(self._items)

    def items(self) -> list[dict[str, Any]]:
        """Return copies of every stored item, ordered by key."""
        return [copy.deepcopy(self._items[key]) for key in sorted(self._items)]

    def _load(self, keys: list[tuple[str, str]]) -> list[DistributionRecord]:
        return [record_from_item(self._items[key]) for key in sorted(keys)]

    async def get(self, owner_id: str, sort_key: str) -> Optional[DistributionRecord]:
        item = self._items.get((owner_id, sort_key))
        return record_from_item(item) if item is not None else None

    async def put(self, record: DistributionRecord, replace: bool = False) -> None:
        key = (record.owner_id, record.sort_key)
        if not replace and key in self._items:
            raise ConditionalPutFailed(record.owner_id, record.sort_key)
        self._items[key] = record_to_item(record)

    async def delete(self, owner_id: str, sort_key: str) -> None:
        self._items.pop((owner_id, sort_key), None)

    async def query(
        self,
        owner_id: str,
        prefix: Optional[str] = None,
        exact: Optional[str] = None,
    ) -> list[DistributionRecord]:
        keys = [
            key for key in self._items
            if key[0] == owner_id
            and (exact is None or key[1] == exact)
            and (prefix is None or key[1].startswith(prefix))
        ]
        return self._load(keys)

    async def query_by_group(
        self, group: str, subdirectory: Optional[str] = None,
    ) -> list[DistributionRecord]:
        keys = [
            key for key, item in self._items.items()
            if group != SENTINEL
            and item.get("shared_with_groups") == group
            and (subdirectory is None
                 or same_subdirectory(item.get("subdirectory"), subdirectory))
        ]
        return self._load(keys)

    async def query_by_user(self, user_id: str) -> list[DistributionRecord]:
        keys = [
            key for key, item in self._items.items()
            if user_id != SENTINEL and item.get("shared_with_users") == user_id
        ]
        return self._load(keys)
