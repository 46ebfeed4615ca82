"""
Secret Lister — Everything a principal can see, one entry per secret.

Three access paths are queried concurrently: the caller's own partition,
the group index for each membership and the user index for the caller.
Rows of the same logical secret are merged so each secret appears once with
its full recipient list.
"""
import asyncio
import logging
from typing import Any

from .codec import decode
from .models import Distribution, DistributionRecord, Principal, SecretView
from .resolver import normalize_groups
from .storage import RecordStore

logger = logging.getLogger("runavault")


def _newer(left: SecretView, right: SecretView) -> bool:
    return (left.version, left.last_modified) > (right.version, right.last_modified)


class SecretLister:

    def __init__(self, storage: RecordStore):
        self._storage = storage

    async def _group_rows(self, groups: Any) -> list[DistributionRecord]:
        results = await asyncio.gather(*(
            self._storage.query_by_group(group) for group in normalize_groups(groups)
        ))
        return [record for rows in results for record in rows]

    async def list_for(self, principal: Principal) -> list[SecretView]:
        """List every secret visible to ``principal``, sorted by site."""
        own, via_groups, via_user = await asyncio.gather(
            self._storage.query(principal.id),
            self._group_rows(principal.groups),
            self._storage.query_by_user(principal.id),
        )
        via_groups = [r for r in via_groups if r.owner_id != principal.id]
        logger.info(
            "Listing for user=%s: %d own, %d via groups, %d direct rows",
            principal.id, len(own), len(via_groups), len(via_user),
        )

        merged: dict[tuple[str, str, str], SecretView] = {}
        for record in [*own, *via_groups, *via_user]:
            view = decode(record)
            view.owned_by_me = record.owner_id == principal.id
            current = merged.get(view.identity)
            if current is None:
                merged[view.identity] = view
                continue
            # metadata comes from the newest row; stale rows only add recipients
            newest = view if _newer(view, current) else current
            newest.shared_with = Distribution(
                groups=current.shared_with.groups + view.shared_with.groups,
                users=current.shared_with.users + view.shared_with.users,
                roles=newest.shared_with.roles,
            )
            merged[view.identity] = newest
        secrets = sorted(merged.values(), key=lambda secret: secret.site.lower())
        logger.debug("Returning %d unique secrets for user=%s", len(secrets), principal.id)
        return secrets
