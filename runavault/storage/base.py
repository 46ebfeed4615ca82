"""Abstract interface of the passwords table."""
from abc import ABC, abstractmethod
from typing import Optional

from ..models import DistributionRecord


class RecordStore(ABC):
    """Key-value table keyed by ``(owner_id, sort_key)``.

    Two secondary indexes are required: one on the shared-with-group
    attribute and one on the shared-with-user attribute. Implementations
    raise :class:`~runavault.exceptions.ConditionalPutFailed` when a
    conditional put meets an existing row and
    :class:`~runavault.exceptions.StorageError` for any other failure.
    """

    @abstractmethod
    async def get(self, owner_id: str, sort_key: str) -> Optional[DistributionRecord]:
        """Point lookup by full key."""

    @abstractmethod
    async def put(self, record: DistributionRecord, replace: bool = False) -> None:
        """Write a row; fails if the key exists unless ``replace``."""

    @abstractmethod
    async def delete(self, owner_id: str, sort_key: str) -> None:
        """Delete a row. Deleting a missing row is not an error."""

    @abstractmethod
    async def query(
        self,
        owner_id: str,
        prefix: Optional[str] = None,
        exact: Optional[str] = None,
    ) -> list[DistributionRecord]:
        """Rows of one partition, optionally by sort-key prefix or exact key."""

    @abstractmethod
    async def query_by_group(
        self, group: str, subdirectory: Optional[str] = None,
    ) -> list[DistributionRecord]:
        """Rows shared with ``group``, optionally filtered by subdirectory."""

    @abstractmethod
    async def query_by_user(self, user_id: str) -> list[DistributionRecord]:
        """Rows shared directly with ``user_id``."""

    async def close(self) -> None:
        """Release backend resources."""
        return None
