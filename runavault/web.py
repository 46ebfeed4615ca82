"""
Vault HTTP API — aiohttp application exposing the secret operations.

Routes:
    GET    /secrets              list visible secrets
    POST   /secrets              create a secret
    PATCH  /secrets              edit a secret
    DELETE /secrets              delete a secret
    POST   /secrets/lookup       read one secret's ciphertext
    POST   /directories/share    share a subdirectory

Every request needs ``Authorization: Bearer <token>``. Request bodies are
JSON; string values are HTML-escaped before use. Errors are answered as
``{"message": ...}`` with the status implied by the error kind.
"""
import logging
from typing import Any, Optional
from collections.abc import Mapping

import orjson
from aiohttp import web

from .auth import TokenVerifier
from .config import VaultConfig
from .exceptions import ErrorKind, InvalidRequest, VaultError
from .models import SecretView
from .service import SecretService
from .storage import (
    DynamoRecordStore,
    MemoryRecordStore,
    PostgresRecordStore,
    RecordStore,
)

logger = logging.getLogger("runavault")

SERVICE_KEY = web.AppKey("service", SecretService)
VERIFIER_KEY = web.AppKey("verifier", TokenVerifier)
PRINCIPAL = "principal"

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INCOMPLETE_DATA: 500,
    ErrorKind.INTERNAL: 500,
}

_HTML_ESCAPES = str.maketrans({
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#39;",
    "\\": "&#92;",
    "`": "&#96;",
})


# ---------------------------------------------------------------------------
# Request / response helpers
# ---------------------------------------------------------------------------

def sanitize_string(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    return value.translate(_HTML_ESCAPES)


def sanitize_object(value: Any) -> Any:
    """HTML-escape every string inside a decoded JSON value."""
    if isinstance(value, str):
        return sanitize_string(value)
    if isinstance(value, list):
        return [sanitize_object(item) for item in value]
    if isinstance(value, dict):
        return {key: sanitize_object(item) for key, item in value.items()}
    return value


def parse_body(raw: bytes, verbatim: tuple[str, ...] = ("password",)) -> dict[str, Any]:
    """Decode and sanitise a JSON request body.

    Args:
        raw: Request body.
        verbatim: Top-level keys passed through unescaped; the payload blob
            is client ciphertext and may itself be JSON text.

    Raises:
        InvalidRequest: If the body is empty, not JSON or not an object.
    """
    if not raw:
        raise InvalidRequest("No body provided")
    try:
        body = orjson.loads(raw)
    except orjson.JSONDecodeError as err:
        raise InvalidRequest("Body is not valid JSON") from err
    if not isinstance(body, dict):
        raise InvalidRequest("Body must be a JSON object")
    return {
        key: value if key in verbatim else sanitize_object(value)
        for key, value in body.items()
    }


def _dumps(obj: Any) -> str:
    return orjson.dumps(obj).decode("utf-8")


def format_response(
    status: int,
    body: Any,
    headers: Optional[Mapping[str, str]] = None,
) -> web.Response:
    return web.json_response(
        body,
        status=status,
        headers={"Access-Control-Allow-Origin": "*", **(headers or {})},
        dumps=_dumps,
    )


def _text(body: Mapping[str, Any], name: str, default: Optional[str] = None) -> Optional[str]:
    value = body.get(name, default)
    if value is not None and not isinstance(value, str):
        raise InvalidRequest(f"'{name}' must be a string")
    return value


def _flag(body: Mapping[str, Any], name: str, default: Optional[bool] = None) -> Optional[bool]:
    value = body.get(name, default)
    if value is not None and not isinstance(value, bool):
        raise InvalidRequest(f"'{name}' must be a boolean")
    return value


def _view(secret: SecretView) -> dict[str, Any]:
    return secret.model_dump(mode="json", exclude_none=True)


async def _body(request: web.Request) -> dict[str, Any]:
    return parse_body(await request.read())


# ---------------------------------------------------------------------------
# Middlewares
# ---------------------------------------------------------------------------

@web.middleware
async def error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    try:
        return await handler(request)
    except VaultError as err:
        status = STATUS_BY_KIND[err.kind]
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, err.message)
        else:
            logger.info("%s %s rejected (%d): %s", request.method, request.path, status, err.message)
        return format_response(status, {"message": err.message})
    except web.HTTPException:
        raise
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return format_response(500, {"message": "Internal Server Error"})


@web.middleware
async def auth_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    if request.method != "OPTIONS":
        verifier = request.app[VERIFIER_KEY]
        request[PRINCIPAL] = await verifier.authenticate(request.headers)
    return await handler(request)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

routes = web.RouteTableDef()


@routes.get("/secrets")
async def list_secrets(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    secrets = await service.list_secrets(request[PRINCIPAL])
    return format_response(200, {"secrets": [_view(secret) for secret in secrets]})


@routes.post("/secrets")
async def create_secret(request: web.Request) -> web.Response:
    body = await _body(request)
    service = request.app[SERVICE_KEY]
    secret = await service.create_secret(
        request[PRINCIPAL],
        site=_text(body, "site"),
        username=_text(body, "username"),
        password=body.get("password"),
        shared_with=body.get("sharedWith"),
        subdirectory=_text(body, "subdirectory", "") or "",
        notes=_text(body, "notes", "") or "",
        tags=body.get("tags"),
        favorite=_flag(body, "favorite", False),
        encrypted=_flag(body, "encrypted", True),
        version=body.get("version", 1),
    )
    return format_response(200, {
        "message": "Password created successfully",
        "secret": _view(secret),
    })


@routes.patch("/secrets")
async def edit_secret(request: web.Request) -> web.Response:
    body = await _body(request)
    service = request.app[SERVICE_KEY]
    secret = await service.edit_secret(
        request[PRINCIPAL],
        site=_text(body, "site"),
        owner_id=_text(body, "user_id"),
        shared_with=body.get("sharedWith"),
        username=_text(body, "username"),
        password=body.get("password"),
        encrypted=_flag(body, "encrypted"),
        subdirectory=_text(body, "subdirectory"),
        notes=_text(body, "notes"),
        tags=body.get("tags"),
        favorite=_flag(body, "favorite"),
    )
    message = (
        "Password updated successfully and moved to new subdirectory"
        if secret.moved_subdirectory else "Password updated successfully"
    )
    return format_response(200, {"message": message, "secret": _view(secret)})


@routes.delete("/secrets")
async def delete_secret(request: web.Request) -> web.Response:
    body = await _body(request)
    service = request.app[SERVICE_KEY]
    count = await service.delete_secret(
        request[PRINCIPAL],
        site=_text(body, "site"),
        subdirectory=_text(body, "subdirectory", ""),
        owner_id=_text(body, "user_id"),
    )
    return format_response(200, {"message": "Password deleted successfully", "count": count})


@routes.post("/secrets/lookup")
async def get_secret(request: web.Request) -> web.Response:
    body = await _body(request)
    service = request.app[SERVICE_KEY]
    secret = await service.get_secret(
        request[PRINCIPAL],
        site=_text(body, "site"),
        subdirectory=_text(body, "subdirectory", ""),
    )
    return format_response(200, secret.model_dump())


@routes.post("/directories/share")
async def share_directory(request: web.Request) -> web.Response:
    body = await _body(request)
    service = request.app[SERVICE_KEY]
    secrets = await service.share_directory(
        request[PRINCIPAL],
        subdirectory=_text(body, "subdirectory"),
        shared_with=body.get("sharedWith"),
    )
    return format_response(200, {
        "message": "Directory shared successfully",
        "secrets": [_view(secret) for secret in secrets],
    })


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

def create_app(service: SecretService, verifier: TokenVerifier) -> web.Application:
    """Build the aiohttp application around a service and a verifier."""
    app = web.Application(middlewares=[error_middleware, auth_middleware])
    app[SERVICE_KEY] = service
    app[VERIFIER_KEY] = verifier
    app.add_routes(routes)
    return app


async def build_storage(config: VaultConfig) -> RecordStore:
    """Instantiate the storage backend selected by ``config``."""
    if config.storage_backend == "dynamodb":
        return DynamoRecordStore(config)
    if config.storage_backend == "postgres":
        import asyncpg

        pool = await asyncpg.create_pool(config.database_dsn)
        storage = PostgresRecordStore(config, pool)
        await storage.create_schema()
        return storage
    logger.warning("Using in-memory storage; secrets are lost on restart")
    return MemoryRecordStore()


async def build_app(config: VaultConfig) -> web.Application:
    storage = await build_storage(config)
    app = create_app(SecretService(storage, config), TokenVerifier(config))

    async def _close_storage(_app: web.Application) -> None:
        await storage.close()

    app.on_cleanup.append(_close_storage)
    return app


def main() -> None:
    """Run the API with configuration from the environment."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = VaultConfig.from_env()
    web.run_app(build_app(config))


if __name__ == "__main__":
    main()
