"""
Share Merger — Add recipients to every secret of a subdirectory.

Unlike edit, sharing is a union: existing recipients stay, new ones are
added and requested roles override existing ones. Each secret is rewritten
as a complete new row set with ``version + 1``.

Stale-row deletion is best effort. A failed delete is logged and left
behind for the next full rewrite. A failed row write aborts the request.
"""
import logging

from .codec import distribution_of, latest_record
from .exceptions import SecretNotFound
from .models import (
    Distribution,
    DistributionRecord,
    LogicalSecret,
    SecretView,
    same_subdirectory,
    utc_timestamp,
)
from .storage import RecordStore
from .writer import FanoutWriter

logger = logging.getLogger("runavault")


def password_id_of(record: DistributionRecord) -> str:
    """Grouping key of a row.

    The stored ``password_id`` attribute, else the segment before the
    recipient suffix, else the whole sort key.
    """
    if record.password_id:
        return record.password_id
    parts = record.sort_key.split("#")
    if len(parts) >= 3 and parts[-2]:
        return parts[-2]
    return record.sort_key


def base_key_for(record: DistributionRecord, password_id: str) -> str:
    parts = record.sort_key.split("#")
    if len(parts) >= 3:
        return "#".join(parts[:-1])
    return f"{parts[0]}#{password_id}"


def group_by_password_id(
    records: list[DistributionRecord],
) -> dict[str, list[DistributionRecord]]:
    grouped: dict[str, list[DistributionRecord]] = {}
    for record in records:
        grouped.setdefault(password_id_of(record), []).append(record)
    return grouped


class ShareMerger:
    """Extends the distribution of a whole subdirectory."""

    def __init__(self, storage: RecordStore, writer: FanoutWriter):
        self._storage = storage
        self._writer = writer

    async def share(
        self,
        owner_id: str,
        subdirectory: str,
        distribution: Distribution,
    ) -> list[SecretView]:
        """Merge ``distribution`` into every secret of ``subdirectory``.

        Args:
            owner_id: Caller; only their own secrets are shared.
            subdirectory: Target subdirectory, ``"default"`` for none.
            distribution: Recipients and roles to add.

        Returns:
            One view per secret processed.

        Raises:
            SecretNotFound: If the subdirectory holds no secrets.
            StorageError: If writing any recipient row fails.
        """
        rows = await self._storage.query(owner_id)
        directory = [r for r in rows if same_subdirectory(r.subdirectory, subdirectory)]
        if not directory:
            raise SecretNotFound("No secrets found in the specified directory")

        last_modified = utc_timestamp()
        shared = []
        for password_id, records in group_by_password_id(directory).items():
            shared.append(
                await self._merge(password_id, records, distribution, last_modified)
            )
        logger.info(
            "Shared %d secret(s) of user=%s subdirectory=%s",
            len(shared), owner_id, subdirectory,
        )
        return shared

    async def _merge(
        self,
        password_id: str,
        records: list[DistributionRecord],
        requested: Distribution,
        last_modified: str,
    ) -> SecretView:
        base = latest_record(records)
        merged = distribution_of(records).union(requested)
        logger.debug(
            "Merging password_id=%s: %d group(s), %d user(s)",
            password_id, len(merged.groups), len(merged.users),
        )

        await self._writer.delete(records, strict=False)

        secret = LogicalSecret(
            **base.model_dump(include={
                "owner_id", "username", "payload", "encrypted", "subdirectory",
                "notes", "tags", "favorite",
            }),
            site=base_key_for(base, password_id),
            password_id=password_id,
            version=base.version + 1,
            last_modified=last_modified,
        )
        return await self._writer.write(
            secret,
            merged,
            replace_keys={record.sort_key for record in records},
            tolerate_conflicts=True,
        )
