"""
Distribution Resolver — Find the row that grants a principal a secret.

Lookup order, first hit wins:

1. point get of the caller's own row ``(caller, site[#subdirectory])``
2. exact-match query on the same key
3. the group index, once per group membership in the caller's order
4. the user index, for rows shared directly with the caller

Owner hits return the stored payload unchanged. Shared hits return a JSON
payload whose ``encryptedPassword`` is the recipient's own override when
the owner supplied one, else the base ciphertext.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional
from collections.abc import Iterable

import orjson

from .codec import GROUP, USER, parse_payload, recipient_ciphertext
from .exceptions import IncompleteSecretData, PayloadFormatError
from .models import DEFAULT_SUBDIRECTORY, DistributionRecord, unique
from .storage import RecordStore

logger = logging.getLogger("runavault")


def normalize_groups(value: Any) -> list[str]:
    """Turn a group-membership claim into a list of group names.

    Accepts a collection of names or one string. A string loses one pair
    of surrounding brackets and is split on whitespace.
    """
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("[") and text.endswith("]"):
            text = text[1:-1]
        return unique(text.split())
    if isinstance(value, Iterable):
        return unique(str(item).strip() for item in value)
    raise TypeError(f"Unsupported group claim type: {type(value).__name__}")


@dataclass
class Resolution:
    """Row that matched and the ciphertext the principal may read."""

    record: DistributionRecord
    ciphertext: str
    via: str
    principal: str

    @property
    def owner_id(self) -> str:
        return self.record.owner_id


class DistributionResolver:
    """Resolves ``(principal, site, subdirectory)`` to a stored row."""

    def __init__(self, storage: RecordStore):
        self._storage = storage

    @staticmethod
    def _own_key(site: str, subdirectory: str) -> str:
        return f"{site}#{subdirectory}" if subdirectory else site

    @staticmethod
    def _match_site(records: list[DistributionRecord], site: str) -> Optional[DistributionRecord]:
        for record in records:
            if record.sort_key.split("#", 1)[0] == site:
                return record
        return None

    @staticmethod
    def _shared_ciphertext(record: DistributionRecord, kind: str, principal: str) -> str:
        try:
            payload = parse_payload(record.payload)
        except PayloadFormatError as err:
            logger.error(
                "Stored payload unreadable for user=%s site=%s: %s",
                record.owner_id, record.sort_key, err.reason,
            )
            raise IncompleteSecretData() from err
        ciphertext = (
            recipient_ciphertext(payload, kind, principal)
            or payload.get("encryptedPassword")
        )
        if not ciphertext:
            raise IncompleteSecretData()
        return orjson.dumps({
            "encryptedPassword": ciphertext,
            "sharedWith": payload.get("sharedWith"),
        }).decode("utf-8")

    async def resolve(
        self,
        principal_id: str,
        groups: Any,
        site: str,
        subdirectory: Optional[str] = "",
    ) -> Optional[Resolution]:
        """Return the best-matching row for the principal, or None.

        Args:
            principal_id: Requesting user id.
            groups: Group memberships, list or delimited string.
            site: Site as the caller knows it.
            subdirectory: Subdirectory; ``"default"`` means none.

        Raises:
            IncompleteSecretData: If a shared row matched but its payload
                cannot be read.
        """
        effective = "" if subdirectory in (None, DEFAULT_SUBDIRECTORY) else subdirectory
        own_key = self._own_key(site, effective)

        record = await self._storage.get(principal_id, own_key)
        if record is None:
            matches = await self._storage.query(principal_id, exact=own_key)
            record = matches[0] if matches else None
        if record is not None:
            return Resolution(record, record.payload, "owner", principal_id)

        index_subdirectory = effective or DEFAULT_SUBDIRECTORY
        for group in normalize_groups(groups):
            candidates = await self._storage.query_by_group(group, index_subdirectory)
            record = self._match_site(candidates, site)
            if record is not None:
                logger.debug(
                    "Resolved site=%s for user=%s via group=%s",
                    site, principal_id, group,
                )
                return Resolution(
                    record,
                    self._shared_ciphertext(record, GROUP, group),
                    GROUP,
                    group,
                )

        candidates = [
            candidate
            for candidate in await self._storage.query_by_user(principal_id)
            if candidate.subdirectory == index_subdirectory
        ]
        record = self._match_site(candidates, site)
        if record is not None:
            return Resolution(
                record,
                self._shared_ciphertext(record, USER, principal_id),
                USER,
                principal_id,
            )
        return None
