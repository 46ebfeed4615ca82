"""RunaVault — Encrypted site credentials shared with users and groups.

Security Note (Threat Model):
    Payloads are ciphertext produced by the client; the vault never sees
    plaintext and never decrypts. Anyone who can read the table can see
    who a secret is shared with, but not its content.
"""

from .version import __version__
from .config import VaultConfig
from .exceptions import ErrorKind, VaultError
from .models import Distribution, Principal, Role, SecretView
from .service import SecretService

__all__ = [
    "__version__",
    "VaultConfig",
    "ErrorKind",
    "VaultError",
    "Distribution",
    "Principal",
    "Role",
    "SecretView",
    "SecretService",
]
