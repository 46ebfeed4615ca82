"""
Secret Service — Create, edit, delete, get, list and share secrets.

Provides the public API of the vault for an authenticated principal:
- ``create_secret`` — validate input and write a new fan-out set
- ``edit_secret`` — Lookup, AuthorizeCaller, MergeDistribution, ReplaceFanout
- ``delete_secret`` — remove every row of a site within a subdirectory
- ``get_secret`` — resolve the ciphertext the caller may read
- ``list_secrets`` — everything the caller owns or was shared
- ``share_directory`` — add recipients to a whole subdirectory

Validation and authorization errors are raised before anything is written.

Security Note:
    Never log payloads. Only log user ids, sort keys and counts.
"""
import uuid
import logging
from typing import Any, Optional
from collections.abc import Mapping

from pydantic import ValidationError

from .codec import (
    GROUP,
    USER,
    base_key_of,
    build_base_key,
    distribution_of,
    latest_record,
    parse_payload,
    password_id_from_key,
    recipient_key,
    serialize_payload,
)
from .config import VaultConfig
from .exceptions import (
    IncompleteSecretData,
    InvalidRequest,
    PermissionDenied,
    SecretNotFound,
)
from .lister import SecretLister
from .models import (
    Distribution,
    DistributionRecord,
    DistributionUpdate,
    LogicalSecret,
    Principal,
    ResolvedSecret,
    Role,
    SecretView,
    normalize_subdirectory,
    same_subdirectory,
    utc_timestamp,
)
from .resolver import DistributionResolver, normalize_groups
from .sharing import ShareMerger
from .storage import RecordStore
from .writer import FanoutWriter

logger = logging.getLogger("runavault")


def _validated(model: type, data: Any, what: str) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as err:
        detail = "; ".join(
            f"{'.'.join(str(p) for p in e['loc']) or 'value'}: {e['msg']}"
            for e in err.errors()
        )
        raise InvalidRequest(f"Invalid {what}: {detail}") from err


class SecretService:
    """Secret operations on top of a :class:`RecordStore`."""

    def __init__(self, storage: RecordStore, config: Optional[VaultConfig] = None):
        self._storage = storage
        self._config = config or VaultConfig()
        self.writer = FanoutWriter(storage)
        self.resolver = DistributionResolver(storage)
        self.lister = SecretLister(storage)
        self.merger = ShareMerger(storage, self.writer)

    @property
    def config(self) -> VaultConfig:
        return self._config

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _check_notes(self, notes: Optional[str]) -> None:
        limit = self._config.max_notes_length
        if notes and len(notes) > limit:
            raise InvalidRequest(f"Notes cannot exceed {limit} characters")

    @staticmethod
    def _can_edit(principal: Principal, owner_id: str, record: DistributionRecord) -> bool:
        if principal.id == owner_id:
            return True
        return any(
            record.roles.get(group) == Role.EDITOR
            for group in normalize_groups(principal.groups)
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_secret(
        self,
        principal: Principal,
        site: str,
        username: str,
        password: Any,
        shared_with: Optional[Mapping] = None,
        subdirectory: str = "",
        notes: str = "",
        tags: Optional[list[str]] = None,
        favorite: bool = False,
        encrypted: bool = True,
        version: int = 1,
    ) -> SecretView:
        """Store a new secret and fan it out to its recipients.

        Raises:
            InvalidRequest: Missing fields, notes too long, bad distribution.
            PayloadFormatError: If ``password`` looks like JSON but is not.
            DuplicateSecret: If one of the new rows already exists.
            SecretNotFound: If the first row cannot be read back.
        """
        if not site or not username or not password:
            raise InvalidRequest(
                "Missing required parameters: site, username, and password are required"
            )
        self._check_notes(notes)
        parse_payload(password)
        distribution = _validated(Distribution, shared_with or {}, "sharedWith")

        password_id = str(uuid.uuid4())
        secret = _validated(LogicalSecret, {
            "owner_id": principal.id,
            "site": build_base_key(site, subdirectory, password_id),
            "password_id": password_id,
            "username": username,
            "payload": serialize_payload(password),
            "encrypted": encrypted,
            "subdirectory": subdirectory,
            "notes": notes,
            "tags": tags,
            "favorite": favorite,
            "version": version,
        }, "secret")

        view = await self.writer.write(secret, distribution)

        if distribution.groups:
            first_key = recipient_key(secret.site, GROUP, distribution.groups[0])
        else:
            first_key = recipient_key(secret.site, USER, next(iter(distribution.users), None))
        if await self._storage.get(principal.id, first_key) is None:
            raise SecretNotFound("Password not found after creation")

        logger.info(
            "Created secret for user=%s site=%s password_id=%s",
            principal.id, secret.site_name, password_id,
        )
        return view

    async def edit_secret(
        self,
        principal: Principal,
        site: str,
        owner_id: Optional[str] = None,
        shared_with: Optional[Mapping] = None,
        username: Optional[str] = None,
        password: Optional[Any] = None,
        encrypted: Optional[bool] = None,
        subdirectory: Optional[str] = None,
        notes: Optional[str] = None,
        tags: Optional[list[str]] = None,
        favorite: Optional[bool] = None,
    ) -> SecretView:
        """Replace a secret's row set with updated fields.

        ``site`` is the base key ``site[#subdirectory]#password_id`` as
        returned by :meth:`list_secrets`. Omitted fields keep their stored
        values; an explicit ``shared_with`` replaces the recipient lists it
        names.

        Raises:
            InvalidRequest: Missing site, site without password id, notes
                too long, bad distribution.
            SecretNotFound: If no rows exist for the site.
            PermissionDenied: If the caller is neither the owner nor in a group
                with the editor role.
        """
        if not site:
            raise InvalidRequest("Missing site parameter")
        if "#" not in site:
            raise InvalidRequest(
                "Invalid site format: Must include password_id (e.g., 'baseSite#password_id')"
            )
        self._check_notes(notes)
        update = _validated(DistributionUpdate, shared_with or {}, "sharedWith")
        target = owner_id or principal.id

        # Lookup
        rows = [
            record for record in await self._storage.query(target, prefix=site)
            if base_key_of(record.sort_key) == site
        ]
        if not rows:
            raise SecretNotFound()
        current = latest_record(rows)

        # AuthorizeCaller
        if not self._can_edit(principal, target, current):
            logger.warning(
                "Edit denied: user=%s owner=%s site=%s",
                principal.id, target, site,
            )
            raise PermissionDenied(
                "Permission denied: You can only edit your own secrets "
                "or those where you're an editor"
            )

        # MergeDistribution
        distribution = update.apply(distribution_of(rows))
        new_subdirectory = (
            current.subdirectory if subdirectory is None
            else normalize_subdirectory(subdirectory)
        )
        secret = _validated(LogicalSecret, {
            "owner_id": target,
            "site": site,
            "password_id": current.password_id or password_id_from_key(site) or "",
            "username": current.username if username is None else username,
            "payload": current.payload if password is None else serialize_payload(password),
            "encrypted": current.encrypted if encrypted is None else encrypted,
            "subdirectory": new_subdirectory,
            "notes": current.notes if notes is None else notes,
            "tags": current.tags if tags is None else tags,
            "favorite": current.favorite if favorite is None else favorite,
            "version": current.version + 1,
            "last_modified": utc_timestamp(),
        }, "secret")

        # ReplaceFanout
        await self.writer.delete(rows)
        view = await self.writer.write(secret, distribution)
        view.moved_subdirectory = new_subdirectory != current.subdirectory
        logger.info(
            "Edited secret owner=%s site=%s by user=%s (version %d)",
            target, site, principal.id, secret.version,
        )
        return view

    async def delete_secret(
        self,
        principal: Principal,
        site: str,
        subdirectory: Optional[str] = "",
        owner_id: Optional[str] = None,
    ) -> int:
        """Delete every row of ``site`` in ``subdirectory``.

        Returns:
            Number of rows deleted.

        Raises:
            InvalidRequest: If site is missing.
            PermissionDenied: If ``owner_id`` names another user.
            SecretNotFound: If no rows match.
        """
        if not site:
            raise InvalidRequest("Missing site parameter")
        if owner_id is not None and owner_id != principal.id:
            raise PermissionDenied("You can only delete your own secrets")

        rows = [
            record for record in await self._storage.query(principal.id, prefix=site)
            if record.sort_key == site or record.sort_key.startswith(f"{site}#")
        ]
        if not rows:
            raise SecretNotFound()
        matching = [r for r in rows if same_subdirectory(r.subdirectory, subdirectory)]
        if not matching:
            raise SecretNotFound()

        for record in matching:
            logger.debug("Deleting item with site key: %s", record.sort_key)
        deleted = await self.writer.delete(matching)
        logger.info("Deleted %d row(s) for user=%s site=%s", deleted, principal.id, site)
        return deleted

    async def get_secret(
        self,
        principal: Principal,
        site: str,
        subdirectory: Optional[str] = "",
    ) -> ResolvedSecret:
        """Return the ciphertext ``principal`` may read for ``site``.

        Raises:
            InvalidRequest: If site is missing.
            SecretNotFound: If no owned or shared row matches.
            IncompleteSecretData: If the matching row has no usable payload.
        """
        if not site:
            raise InvalidRequest("Missing site parameter")
        resolution = await self.resolver.resolve(
            principal.id, principal.groups, site, subdirectory,
        )
        if resolution is None:
            raise SecretNotFound()
        if not resolution.ciphertext:
            raise IncompleteSecretData()
        record = resolution.record
        return ResolvedSecret(
            site=site,
            username=record.username,
            subdirectory=record.subdirectory,
            payload=resolution.ciphertext,
            owner_id=record.owner_id,
            via=resolution.via,
        )

    async def list_secrets(self, principal: Principal) -> list[SecretView]:
        return await self.lister.list_for(principal)

    async def share_directory(
        self,
        principal: Principal,
        subdirectory: str,
        shared_with: Any,
    ) -> list[SecretView]:
        """Add recipients to every secret the caller owns in a subdirectory.

        Raises:
            InvalidRequest: Missing subdirectory, malformed or empty
                ``shared_with``.
            SecretNotFound: If the subdirectory holds no secrets.
        """
        if not subdirectory:
            raise InvalidRequest("Missing subdirectory parameter")
        if not isinstance(shared_with, Mapping):
            raise InvalidRequest("Invalid or missing 'sharedWith' parameter")
        users = shared_with.get("users")
        groups = shared_with.get("groups")
        roles = shared_with.get("roles")
        distribution = _validated(Distribution, {
            "users": users if isinstance(users, list) else [],
            "groups": groups if isinstance(groups, list) else [],
            "roles": roles if isinstance(roles, Mapping) else {},
        }, "sharedWith")
        if distribution.is_empty:
            raise InvalidRequest(
                "At least one user or group must be specified for sharing"
            )
        return await self.merger.share(principal.id, subdirectory, distribution)
