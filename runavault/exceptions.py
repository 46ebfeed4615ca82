"""
Vault Errors — Error taxonomy for secret distribution operations.

Every error carries an explicit :class:`ErrorKind` set where the failure is
detected. Callers (the HTTP layer included) map the kind to a response
status; the message text is for humans only.
"""
from enum import Enum


class ErrorKind(str, Enum):
    """Classification of a vault failure."""

    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INCOMPLETE_DATA = "incomplete_data"
    INTERNAL = "internal"


class VaultError(Exception):
    """Base Error class."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str = "Internal Server Error"):
        super().__init__(message)
        self.message = message


class InvalidRequest(VaultError):
    """Missing or malformed input; raised before any storage access."""

    kind = ErrorKind.VALIDATION


class PayloadFormatError(InvalidRequest):
    CUSTOM_ERROR_MESSAGE = "Invalid password format"

    def __init__(self, reason: str = ""):
        super().__init__(self.CUSTOM_ERROR_MESSAGE)
        self.reason = reason


class AuthenticationError(VaultError):
    """Missing, malformed or unverifiable identity."""

    kind = ErrorKind.UNAUTHORIZED


class PermissionDenied(VaultError):
    kind = ErrorKind.FORBIDDEN


class SecretNotFound(VaultError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str = "Password not found"):
        super().__init__(message)


class DuplicateSecret(VaultError):
    CUSTOM_ERROR_MESSAGE = "An item with user_id {} and site {} already exists"

    kind = ErrorKind.CONFLICT

    def __init__(self, owner_id: str, sort_key: str):
        super().__init__(self.CUSTOM_ERROR_MESSAGE.format(owner_id, sort_key))
        self.owner_id = owner_id
        self.sort_key = sort_key


class IncompleteSecretData(VaultError):
    kind = ErrorKind.INCOMPLETE_DATA

    def __init__(self, message: str = "Secret data is incomplete in the database"):
        super().__init__(message)


class StorageError(VaultError):
    """Failure reported by the storage collaborator."""

    kind = ErrorKind.INTERNAL


class ConditionalPutFailed(StorageError):
    """A conditional put found an existing row with the same key."""

    kind = ErrorKind.CONFLICT

    def __init__(self, owner_id: str, sort_key: str):
        super().__init__(
            f"Row already exists: user_id={owner_id} site={sort_key}"
        )
        self.owner_id = owner_id
        self.sort_key = sort_key
