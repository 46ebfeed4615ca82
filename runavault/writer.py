"""
Fan-out Writer — Materialise and remove the rows of one logical secret.

All row operations for a secret are issued at once and joined; different
sort keys never collide, and there is no transaction spanning the rows.
Readers may briefly see some recipient rows written and others not.
"""
import asyncio
import logging
from collections.abc import Iterable

from .codec import encode
from .exceptions import ConditionalPutFailed, DuplicateSecret
from .models import Distribution, DistributionRecord, LogicalSecret, SecretView
from .storage import RecordStore

logger = logging.getLogger("runavault")


async def _join(operations: list) -> list[BaseException]:
    """Run all operations to completion and return the failures in order."""
    results = await asyncio.gather(*operations, return_exceptions=True)
    return [result for result in results if isinstance(result, BaseException)]


class FanoutWriter:
    """Writes the complete row set of a secret."""

    def __init__(self, storage: RecordStore):
        self._storage = storage

    async def _put(
        self,
        record: DistributionRecord,
        replace: bool,
        tolerate_conflicts: bool,
    ) -> None:
        try:
            await self._storage.put(record, replace=replace)
        except ConditionalPutFailed as err:
            if not tolerate_conflicts:
                raise DuplicateSecret(err.owner_id, err.sort_key) from err
            logger.debug("Row already exists, skipping: site=%s", record.sort_key)

    async def write(
        self,
        secret: LogicalSecret,
        distribution: Distribution,
        replace_keys: Iterable[str] = (),
        tolerate_conflicts: bool = False,
    ) -> SecretView:
        """Write one row per recipient slot.

        Args:
            secret: Secret to store; ``secret.site`` is its base key.
            distribution: Fully resolved recipients and roles.
            replace_keys: Sort keys to write unconditionally.
            tolerate_conflicts: Treat conditional-put conflicts as no-ops.

        Returns:
            View of the stored secret with the resolved distribution.

        Raises:
            DuplicateSecret: If a conditional put met an existing row and
                conflicts are not tolerated.
            StorageError: For any other storage failure.
        """
        replace = frozenset(replace_keys)
        records = encode(secret, distribution)
        failures = await _join([
            self._put(record, record.sort_key in replace, tolerate_conflicts)
            for record in records
        ])
        if failures:
            logger.error(
                "Fan-out for user=%s site=%s failed on %d of %d rows",
                secret.owner_id, secret.site, len(failures), len(records),
            )
            raise failures[0]
        logger.debug(
            "Fan-out wrote %d rows for user=%s site=%s",
            len(records), secret.owner_id, secret.site,
        )
        return SecretView(
            **secret.model_dump(),
            shared_with=distribution,
        )

    async def delete(
        self,
        records: Iterable[DistributionRecord],
        strict: bool = True,
    ) -> int:
        """Delete rows concurrently.

        Args:
            records: Rows to delete.
            strict: Raise the first failure. When False failures are logged
                and only the successful deletions are counted.

        Returns:
            Number of rows deleted.
        """
        records = list(records)
        failures = await _join([
            self._storage.delete(record.owner_id, record.sort_key)
            for record in records
        ])
        if failures:
            if strict:
                raise failures[0]
            for failure in failures:
                logger.warning("Ignoring failed delete of stale row: %s", failure)
        return len(records) - len(failures)
