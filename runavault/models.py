"""
Vault Models — Logical secrets, distribution lists and stored rows.

A :class:`LogicalSecret` is what a user creates. It is stored as several
:class:`DistributionRecord` rows, one per recipient slot, and read back as
:class:`SecretView` objects. Absence of a recipient or of tags is ``None`` /
an empty list here; the ``"NONE"`` sentinel only exists at the storage
boundary (see :mod:`runavault.codec`).
"""
from enum import Enum
from typing import Any, Optional
from collections.abc import Iterable
from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

SENTINEL = "NONE"
DEFAULT_SUBDIRECTORY = "default"


def utc_timestamp() -> str:
    """Return the current UTC time as ISO-8601 with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def unique(values: Iterable[str]) -> list[str]:
    """Order-preserving de-duplication that drops blanks and the sentinel."""
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        if not value or value == SENTINEL or value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


def normalize_subdirectory(value: Optional[str]) -> str:
    """Map an empty subdirectory to ``"default"``."""
    return value or DEFAULT_SUBDIRECTORY


def same_subdirectory(left: Optional[str], right: Optional[str]) -> bool:
    """Compare subdirectories treating ``""`` and ``"default"`` as equal."""
    return normalize_subdirectory(left) == normalize_subdirectory(right)


class Role(str, Enum):
    VIEWER = "viewer"
    EDITOR = "editor"


class Principal(BaseModel):
    """A verified caller: user id plus group memberships."""

    id: str = Field(min_length=1)
    groups: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Distribution lists
# ---------------------------------------------------------------------------

def _recipients(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise ValueError("recipients must be a list of identifiers")
    return unique(str(item).strip() for item in value)


class Distribution(BaseModel):
    """Groups, users and roles a secret is shared with."""

    users: list[str] = Field(default_factory=list)
    groups: list[str] = Field(default_factory=list)
    roles: dict[str, Role] = Field(default_factory=dict)

    @field_validator("users", "groups", mode="before")
    @classmethod
    def clean_recipients(cls, v: Any) -> list[str]:
        return _recipients(v)

    @field_validator("roles", mode="before")
    @classmethod
    def clean_roles(cls, v: Any) -> Any:
        return {} if v is None else v

    @property
    def is_empty(self) -> bool:
        return not self.users and not self.groups

    def role_of(self, principal_id: str) -> Optional[Role]:
        return self.roles.get(principal_id)

    def union(self, other: "Distribution") -> "Distribution":
        """Merge recipients of both lists; roles of ``other`` win."""
        return Distribution(
            users=self.users + other.users,
            groups=self.groups + other.groups,
            roles={**self.roles, **other.roles},
        )


class DistributionUpdate(BaseModel):
    """Partial distribution supplied on edit; ``None`` means inherit."""

    users: Optional[list[str]] = None
    groups: Optional[list[str]] = None
    roles: Optional[dict[str, Role]] = None

    @field_validator("users", "groups", mode="before")
    @classmethod
    def clean_recipients(cls, v: Any) -> Optional[list[str]]:
        return None if v is None else _recipients(v)

    def apply(self, existing: Distribution) -> Distribution:
        return Distribution(
            users=existing.users if self.users is None else self.users,
            groups=existing.groups if self.groups is None else self.groups,
            roles=existing.roles if self.roles is None else self.roles,
        )


# ---------------------------------------------------------------------------
# Secrets and rows
# ---------------------------------------------------------------------------

class SecretFields(BaseModel):
    """Metadata duplicated on every row of a logical secret."""

    username: str = ""
    payload: str = ""
    encrypted: bool = True
    subdirectory: str = DEFAULT_SUBDIRECTORY
    notes: str = ""
    tags: list[str] = Field(default_factory=list)
    favorite: bool = False
    version: int = 1
    last_modified: str = Field(default_factory=utc_timestamp)

    @field_validator("subdirectory", mode="before")
    @classmethod
    def default_subdirectory(cls, v: Any) -> str:
        return normalize_subdirectory(v)

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            raise ValueError("tags must be a list of strings")
        return [tag for tag in v if tag and tag != SENTINEL]

    @field_validator("notes", mode="before")
    @classmethod
    def default_notes(cls, v: Any) -> str:
        return v or ""


class LogicalSecret(SecretFields):
    """One user-facing secret.

    ``site`` is the base composite key ``site[#subdirectory]#password_id``.
    """

    owner_id: str
    site: str
    password_id: str

    @property
    def site_name(self) -> str:
        return self.site.split("#", 1)[0]


class DistributionRecord(SecretFields):
    """One physical storage row."""

    owner_id: str
    sort_key: str
    password_id: Optional[str] = None
    shared_with_group: Optional[str] = None
    shared_with_user: Optional[str] = None
    roles: dict[str, Role] = Field(default_factory=dict)

    @field_validator("shared_with_group", "shared_with_user", mode="before")
    @classmethod
    def strip_sentinel(cls, v: Any) -> Optional[str]:
        return None if not v or v == SENTINEL else v

    @field_validator("roles", mode="before")
    @classmethod
    def clean_roles(cls, v: Any) -> Any:
        return {} if v is None else v


class SecretView(SecretFields):
    """A logical secret as returned to callers."""

    owner_id: str
    site: str
    password_id: Optional[str] = None
    payload: Any = None
    shared_with: Distribution = Field(default_factory=Distribution)
    owned_by_me: Optional[bool] = None
    moved_subdirectory: Optional[bool] = None
    payload_valid: bool = Field(default=True, exclude=True)

    @property
    def site_name(self) -> str:
        return self.site.split("#", 1)[0]

    @property
    def identity(self) -> tuple[str, str, str]:
        """Key used to merge rows of the same logical secret."""
        return (self.owner_id, self.site, self.subdirectory)


class ResolvedSecret(BaseModel):
    """Result of a single-secret lookup for one principal."""

    site: str
    username: str
    subdirectory: str
    payload: str
    owner_id: str = Field(exclude=True)
    via: str = Field(default="owner", exclude=True)
