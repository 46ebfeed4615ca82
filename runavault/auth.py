"""
Vault Identity — Bearer tokens to principals.

Tokens are RS256 JWTs issued by a Cognito user pool. Signing keys come from
the pool's JWKS endpoint (cached by ``jwt.PyJWKClient``). The verified
``sub`` claim is the user id; ``cognito:groups`` holds group memberships.
Both ID tokens (``aud``) and access tokens (``client_id``) are accepted.
"""
import asyncio
import logging
from typing import Any, Optional
from collections.abc import Mapping

import jwt

from .config import VaultConfig
from .exceptions import AuthenticationError
from .models import Principal
from .resolver import normalize_groups

logger = logging.getLogger("runavault")

GROUPS_CLAIM = "cognito:groups"


def get_auth_token(headers: Mapping[str, str]) -> str:
    """Extract the bearer token from request headers.

    Raises:
        AuthenticationError: If no ``Authorization: Bearer`` header is present.
    """
    header = headers.get("Authorization") or headers.get("authorization") or ""
    if not header.startswith("Bearer "):
        raise AuthenticationError("Unauthorized: No token provided")
    token = header[len("Bearer "):].strip()
    if not token:
        raise AuthenticationError("Unauthorized: No token provided")
    return token


def principal_from_claims(claims: Mapping[str, Any]) -> Principal:
    """Build a principal from verified token claims.

    Raises:
        AuthenticationError: If the claims carry no ``sub``.
    """
    user_id = claims.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token: Missing userId")
    return Principal(id=user_id, groups=normalize_groups(claims.get(GROUPS_CLAIM)))


class TokenVerifier:
    """Verifies Cognito-issued RS256 tokens.

    Args:
        config: Vault configuration; ``jwks_url`` and ``client_id`` are used.
        jwks_client: Object exposing ``get_signing_key_from_jwt``; defaults
            to a ``jwt.PyJWKClient`` for the configured user pool.
    """

    algorithms = ["RS256"]

    def __init__(self, config: VaultConfig, jwks_client: Optional[Any] = None):
        self._config = config
        self._jwks_client = jwks_client

    def _client(self) -> Any:
        if self._jwks_client is None:
            self._jwks_client = jwt.PyJWKClient(self._config.jwks_url, cache_keys=True)
        return self._jwks_client

    def decode(self, token: str) -> dict[str, Any]:
        """Verify ``token`` and return its claims (blocking).

        Raises:
            AuthenticationError: On any verification failure.
        """
        try:
            signing_key = self._client().get_signing_key_from_jwt(token)
        except jwt.DecodeError as err:
            raise AuthenticationError("Invalid token: Missing key ID") from err
        except jwt.PyJWTError as err:
            raise AuthenticationError(f"Unauthorized: {err}") from err
        try:
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=self.algorithms,
                options={"verify_aud": False},
            )
        except jwt.ExpiredSignatureError as err:
            raise AuthenticationError("Unauthorized: Token has expired") from err
        except jwt.PyJWTError as err:
            logger.debug("Token rejected: %s", err)
            raise AuthenticationError(f"Unauthorized: {err}") from err
        self._check_client(claims)
        return claims

    def _check_client(self, claims: Mapping[str, Any]) -> None:
        """Check the token was issued to the configured app client.

        ID tokens name the client in ``aud``; access tokens in ``client_id``.
        """
        expected = self._config.client_id
        if expected is None:
            return
        if claims.get("token_use") == "access":
            issued_to = claims.get("client_id")
        else:
            issued_to = claims.get("aud")
        if not isinstance(issued_to, list):
            issued_to = [issued_to]
        if expected not in issued_to:
            logger.debug("Token rejected: issued to %s", issued_to)
            raise AuthenticationError("Unauthorized: Invalid audience")

    async def verify(self, token: str) -> dict[str, Any]:
        return await asyncio.to_thread(self.decode, token)

    async def authenticate(self, headers: Mapping[str, str]) -> Principal:
        """Verify the request's bearer token and return its principal."""
        claims = await self.verify(get_auth_token(headers))
        return principal_from_claims(claims)
