"""
Tests for the aiohttp API.

The token verifier is replaced by a fake that reads ``user:group,group``
straight from the bearer token.
"""
from unittest.mock import AsyncMock

import pytest
from aiohttp import test_utils

from runavault.auth import get_auth_token
from runavault.exceptions import InvalidRequest
from runavault.models import Principal
from runavault.web import create_app, parse_body, sanitize_object, sanitize_string


# --- Test Fixtures ---

class FakeVerifier:
    async def authenticate(self, headers):
        user, _, groups = get_auth_token(headers).partition(":")
        return Principal(id=user, groups=groups.split(",") if groups else [])


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client(service):
    app = create_app(service, FakeVerifier())
    async with test_utils.TestClient(test_utils.TestServer(app)) as test_client:
        yield test_client


async def create(client, token="alice", **body):
    payload = {"site": "a.com", "username": "u", "password": "c"}
    payload.update(body)
    resp = await client.post("/secrets", json=payload, headers=auth(token))
    assert resp.status == 200
    return (await resp.json())["secret"]


# --- Body helpers ---

class TestBodyHelpers:

    def test_sanitize_string(self):
        """Test escaping a string."""
        assert sanitize_string('<script>alert("x");</script>') == (
            "&lt;script&gt;alert(&quot;x&quot;);&lt;/script&gt;"
        )
        assert sanitize_string("it's `a` \\") == "it&#39;s &#96;a&#96; &#92;"
        assert sanitize_string(123) == 123
        assert sanitize_string(None) is None

    def test_sanitize_nested(self):
        """Test escaping nested values."""
        assert sanitize_object({"a": ["<b>", {"c": ">"}], "n": 1}) == {
            "a": ["&lt;b&gt;", {"c": "&gt;"}],
            "n": 1,
        }

    def test_parse_body_keeps_password(self):
        """Test the password is kept verbatim."""
        body = parse_body(b'{"site": "<a>", "password": "{\\"k\\": 1}"}')
        assert body["site"] == "&lt;a&gt;"
        assert body["password"] == '{"k": 1}'

    @pytest.mark.parametrize("raw, message", [
        (b"", "No body provided"),
        (b"{nope", "Body is not valid JSON"),
        (b"[1, 2]", "Body must be a JSON object"),
    ])
    def test_parse_body_errors(self, raw, message):
        """Test unusable bodies."""
        with pytest.raises(InvalidRequest) as exc:
            parse_body(raw)
        assert exc.value.message == message


# --- Routes ---

class TestAuthentication:

    async def test_missing_token(self, client):
        """Test a request without a token."""
        resp = await client.get("/secrets")
        assert resp.status == 401
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        assert (await resp.json()) == {"message": "Unauthorized: No token provided"}


class TestSecretRoutes:
    """Tests for the /secrets routes."""

    async def test_create_and_list(self, client):
        """Test creating then listing a secret."""
        secret = await create(client, sharedWith={"groups": ["G1"]})
        assert secret["shared_with"]["groups"] == ["G1"]
        resp = await client.get("/secrets", headers=auth("alice"))
        assert resp.status == 200
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        secrets = (await resp.json())["secrets"]
        assert len(secrets) == 1
        assert secrets[0]["site"] == secret["site"]
        assert secrets[0]["owned_by_me"] is True
        assert "payload_valid" not in secrets[0]

    async def test_create_without_body(self, client):
        """Test creating without a body."""
        resp = await client.post("/secrets", headers=auth("alice"))
        assert resp.status == 400
        assert (await resp.json())["message"] == "No body provided"

    async def test_create_with_bad_site_type(self, client):
        """Test creating with a non-string site."""
        resp = await client.post(
            "/secrets", json={"site": 1, "username": "u", "password": "c"}, headers=auth("alice"),
        )
        assert resp.status == 400

    async def test_create_missing_fields(self, client):
        """Test creating without required fields."""
        resp = await client.post("/secrets", json={"site": "a.com"}, headers=auth("alice"))
        assert resp.status == 400

    async def test_lookup_via_group(self, client):
        """Test looking up a group-shared secret."""
        await create(client, sharedWith={"groups": ["G1"]})
        resp = await client.post("/secrets/lookup", json={"site": "a.com"}, headers=auth("bob:G1"))
        assert resp.status == 200
        body = await resp.json()
        assert body["site"] == "a.com"
        assert body["username"] == "u"
        assert "encryptedPassword" in body["payload"]

    async def test_lookup_not_found(self, client):
        """Test looking up an unknown secret."""
        resp = await client.post("/secrets/lookup", json={"site": "a.com"}, headers=auth("bob"))
        assert resp.status == 404
        assert (await resp.json())["message"] == "Password not found"

    async def test_edit_forbidden(self, client):
        """Test editing another user's secret."""
        secret = await create(client, sharedWith={"users": ["bob"], "roles": {"bob": "viewer"}})
        resp = await client.patch(
            "/secrets",
            json={"site": secret["site"], "user_id": "alice", "username": "x"},
            headers=auth("bob"),
        )
        assert resp.status == 403

    async def test_edit_moves_subdirectory(self, client):
        """Test the move message on edit."""
        secret = await create(client)
        resp = await client.patch(
            "/secrets",
            json={"site": secret["site"], "subdirectory": "work"},
            headers=auth("alice"),
        )
        assert resp.status == 200
        body = await resp.json()
        assert body["message"] == "Password updated successfully and moved to new subdirectory"
        assert body["secret"]["version"] == 2

    async def test_delete(self, client):
        """Test deleting a secret."""
        secret = await create(client)
        resp = await client.delete(
            "/secrets", json={"site": secret["site"]}, headers=auth("alice"),
        )
        assert resp.status == 200
        assert (await resp.json()) == {"message": "Password deleted successfully", "count": 2}


class TestShareRoute:

    async def test_share_directory(self, client):
        """Test sharing a directory."""
        await create(client, subdirectory="work")
        resp = await client.post(
            "/directories/share",
            json={"subdirectory": "work", "sharedWith": {"users": ["carol"]}},
            headers=auth("alice"),
        )
        assert resp.status == 200
        body = await resp.json()
        assert body["message"] == "Directory shared successfully"
        assert body["secrets"][0]["shared_with"]["users"] == ["carol"]

    async def test_share_without_recipients(self, client):
        """Test sharing without recipients."""
        await create(client, subdirectory="work")
        resp = await client.post(
            "/directories/share",
            json={"subdirectory": "work", "sharedWith": {}},
            headers=auth("alice"),
        )
        assert resp.status == 400


class TestErrors:

    async def test_unexpected_error(self, client, service):
        """Test an unexpected error becomes a 500."""
        service.list_secrets = AsyncMock(side_effect=RuntimeError("boom"))
        resp = await client.get("/secrets", headers=auth("alice"))
        assert resp.status == 500
        assert (await resp.json()) == {"message": "Internal Server Error"}

    async def test_unknown_route(self, client):
        """Test an unknown route."""
        resp = await client.get("/nope", headers=auth("alice"))
        assert resp.status == 404
