"""
Secret Record Codec — Fan-out encoding, row decoding and payload parsing.

Sort key layout::

    {site}[#{subdirectory}]#{password_id}#group:{group|NONE}
    {site}[#{subdirectory}]#{password_id}#user:{user|NONE}

Everything before the recipient suffix is the *base key*; all rows of one
logical secret share it. Stored items use the attribute names of the
``passwords`` table (``user_id``, ``site``, ``shared_with_groups`` ...);
:func:`record_to_item` and :func:`record_from_item` translate between those
items and :class:`~runavault.models.DistributionRecord` and are the only
place where the ``"NONE"`` sentinel is written or stripped.
"""
import logging
from typing import Any, Optional
from collections.abc import Mapping

import orjson

from .exceptions import PayloadFormatError
from .models import (
    DEFAULT_SUBDIRECTORY,
    SENTINEL,
    Distribution,
    DistributionRecord,
    LogicalSecret,
    Role,
    SecretFields,
    SecretView,
)

logger = logging.getLogger("runavault")

GROUP = "group"
USER = "user"
_MARKERS = {GROUP: f"#{GROUP}:", USER: f"#{USER}:"}

# model field -> table attribute, for the fields whose names differ
_ATTRIBUTES = {
    "owner_id": "user_id",
    "sort_key": "site",
    "shared_with_group": "shared_with_groups",
    "shared_with_user": "shared_with_users",
    "roles": "shared_with_roles",
    "payload": "password",
}
_METADATA = tuple(SecretFields.model_fields)


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

def build_base_key(site: str, subdirectory: Optional[str], password_id: str) -> str:
    """Build ``site[#subdirectory]#password_id``.

    The subdirectory segment is left out when empty or ``"default"``.
    """
    parts = [site]
    if subdirectory and subdirectory != DEFAULT_SUBDIRECTORY:
        parts.append(subdirectory)
    parts.append(password_id)
    return "#".join(parts)


def recipient_key(base_key: str, kind: str, recipient: Optional[str]) -> str:
    return f"{base_key}{_MARKERS[kind]}{recipient or SENTINEL}"


def split_sort_key(sort_key: str) -> tuple[str, Optional[str], Optional[str]]:
    """Split a sort key into ``(base_key, kind, recipient)``.

    ``kind`` is ``"group"``, ``"user"`` or ``None`` when the key carries no
    recipient suffix. A sentinel recipient comes back as ``None``.
    """
    index, kind = max(
        (sort_key.rfind(marker), kind) for kind, marker in _MARKERS.items()
    )
    if index < 0:
        return sort_key, None, None
    recipient = sort_key[index + len(_MARKERS[kind]):]
    return sort_key[:index], kind, (None if recipient == SENTINEL else recipient)


def base_key_of(sort_key: str) -> str:
    return split_sort_key(sort_key)[0]


def password_id_from_key(base_key: str) -> Optional[str]:
    """Return the last ``#`` segment of a base key, if it has one."""
    parts = base_key.split("#")
    if len(parts) < 2:
        return None
    return parts[-1] or None


# ---------------------------------------------------------------------------
# Payload
# ---------------------------------------------------------------------------

def _wrap_ciphertext(raw: Any) -> dict:
    return {
        "encryptedPassword": raw,
        "sharedWith": {"users": [], "groups": []},
    }


def parse_payload(raw: Any) -> dict:
    """Parse a stored payload blob.

    A string starting with ``{`` must be a JSON object; any other string is
    the ciphertext itself and gets wrapped.

    Raises:
        PayloadFormatError: If the blob looks like JSON but does not parse,
            or is not a string at all.
    """
    if isinstance(raw, Mapping):
        return dict(raw)
    if not isinstance(raw, str):
        raise PayloadFormatError(f"unsupported payload type {type(raw).__name__}")
    if not raw.startswith("{"):
        return _wrap_ciphertext(raw)
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as err:
        raise PayloadFormatError(str(err)) from err
    if not isinstance(data, dict):
        raise PayloadFormatError("payload is not a JSON object")
    return data


def load_payload(raw: Any) -> tuple[dict, bool]:
    """Tolerant variant of :func:`parse_payload`.

    Returns:
        ``(payload, valid)``. A malformed blob is logged and treated as the
        whole ciphertext, with ``valid`` set to False.
    """
    try:
        return parse_payload(raw), True
    except PayloadFormatError as err:
        logger.warning(
            "Malformed payload, falling back to raw ciphertext: %s", err.reason,
        )
        return _wrap_ciphertext(raw), False


def serialize_payload(value: Any) -> str:
    """Return the string form stored in the ``password`` attribute."""
    if isinstance(value, Mapping):
        return orjson.dumps(dict(value)).decode("utf-8")
    return value


def recipient_ciphertext(payload: Mapping, kind: str, principal_id: str) -> Optional[str]:
    """Find the per-recipient ciphertext override inside a payload.

    Args:
        payload: Parsed payload (see :func:`parse_payload`).
        kind: ``"group"`` or ``"user"``.
        principal_id: Group name or user id.

    Returns:
        The override, or None if the payload carries none for this recipient.
    """
    id_field = "groupId" if kind == GROUP else "userId"
    shared = payload.get("sharedWith") or {}
    if not isinstance(shared, Mapping):
        return None
    for entry in shared.get(f"{kind}s") or []:
        if isinstance(entry, Mapping) and entry.get(id_field) == principal_id:
            return entry.get("encryptedPassword")
    return None


# ---------------------------------------------------------------------------
# Fan-out
# ---------------------------------------------------------------------------

def encode(secret: LogicalSecret, distribution: Distribution) -> list[DistributionRecord]:
    """Materialise a logical secret as one row per recipient slot.

    Produces ``max(G, 1) + max(U, 1)`` rows: an empty recipient list still
    yields one sentinel row.
    """
    fields = secret.model_dump(exclude={"site"})
    records = []
    for group in distribution.groups or [None]:
        records.append(DistributionRecord(
            **fields,
            sort_key=recipient_key(secret.site, GROUP, group),
            shared_with_group=group,
            roles=distribution.roles,
        ))
    for user in distribution.users or [None]:
        records.append(DistributionRecord(
            **fields,
            sort_key=recipient_key(secret.site, USER, user),
            shared_with_user=user,
            roles=distribution.roles,
        ))
    return records


def decode(record: DistributionRecord) -> SecretView:
    """Turn one row into a view of its logical secret.

    The distribution of the view only holds this row's recipient; merge views
    of sibling rows to get the full list.
    """
    base_key = base_key_of(record.sort_key)
    payload, valid = load_payload(record.payload)
    fields = record.model_dump(include=set(_METADATA))
    fields["payload"] = payload
    return SecretView(
        **fields,
        owner_id=record.owner_id,
        site=base_key,
        password_id=record.password_id or password_id_from_key(base_key),
        payload_valid=valid,
        shared_with=Distribution(
            groups=[record.shared_with_group] if record.shared_with_group else [],
            users=[record.shared_with_user] if record.shared_with_user else [],
            roles=record.roles,
        ),
    )


def latest_record(records: list[DistributionRecord]) -> DistributionRecord:
    """Return the most recently written row of a secret.

    A row left behind by a failed stale-row delete carries an older
    ``version``; it must never be the source of metadata for a rewrite.
    """
    return max(records, key=lambda r: (r.version, r.last_modified))


def distribution_of(records: list[DistributionRecord]) -> Distribution:
    """Rebuild the distribution list from a secret's rows.

    Roles are taken from the latest row (see :func:`latest_record`).
    """
    if not records:
        return Distribution()
    return Distribution(
        groups=[r.shared_with_group for r in records if r.shared_with_group],
        users=[r.shared_with_user for r in records if r.shared_with_user],
        roles=latest_record(records).roles,
    )


# ---------------------------------------------------------------------------
# Storage items
# ---------------------------------------------------------------------------

def record_to_item(record: DistributionRecord) -> dict[str, Any]:
    """Serialise a row to table attributes, writing sentinels where needed."""
    data = record.model_dump()
    data["shared_with_group"] = record.shared_with_group or SENTINEL
    data["shared_with_user"] = record.shared_with_user or SENTINEL
    data["roles"] = {name: Role(role).value for name, role in record.roles.items()}
    data["tags"] = list(record.tags) or [SENTINEL]
    if record.password_id is None:
        data.pop("password_id")
    return {_ATTRIBUTES.get(name, name): value for name, value in data.items()}


def record_from_item(item: Mapping[str, Any]) -> DistributionRecord:
    """Build a row from table attributes, stripping sentinels.

    Unknown role names are dropped rather than failing the whole row.
    """
    names = {attr: name for name, attr in _ATTRIBUTES.items()}
    data = {names.get(attr, attr): value for attr, value in item.items()}
    roles = data.get("roles") or {}
    data["roles"] = {
        name: role for name, role in roles.items()
        if role in (Role.VIEWER.value, Role.EDITOR.value)
    }
    tags = data.get("tags")
    if tags is not None:
        data["tags"] = sorted(tags) if isinstance(tags, (set, frozenset)) else list(tags)
    if "version" in data and data["version"] is not None:
        data["version"] = int(data["version"])
    return DistributionRecord.model_validate(data)
