from __future__ import annotations

import json

import httpx
import pytest

from passkeys_client.__main__ import _list_users
from passkeys_client.api import ApiClient
from passkeys_client.errors import AuthenticationFailed, ServerRejected, TransportError
from passkeys_client.repository import AuthRepository

pytestmark = pytest.mark.anyio


def make_client(temp_settings, handler) -> ApiClient:
    return ApiClient(temp_settings, transport=httpx.MockTransport(handler))


async def test_options_strip_challenge_id(temp_settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"challenge": "abc", "rpId": "localhost", "challengeId": "cid-1"})

    options, challenge_id = await make_client(temp_settings, handler).generate_authentication_options("alice")

    assert challenge_id == "cid-1"
    assert options == {"challenge": "abc", "rpId": "localhost"}
    assert seen["path"] == "/api/generate-authentication-options"
    assert seen["body"] == {"username": "alice", "userVerification": "preferred", "timeout": 60000}


async def test_unbound_options_omit_username(temp_settings):
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"challenge": "abc", "challengeId": "cid"})

    await AuthRepository(make_client(temp_settings, handler)).generate_options("   ")
    assert "username" not in bodies[0]


async def test_error_status_raises_server_rejected(temp_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "No challenge found. Please start sign-in again."})

    with pytest.raises(ServerRejected) as excinfo:
        await make_client(temp_settings, handler).verify_authentication({"id": "x"}, "gone")
    assert excinfo.value.status_code == 400
    assert "start sign-in again" in excinfo.value.message


async def test_network_failure_raises_transport_error(temp_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError):
        await make_client(temp_settings, handler).generate_authentication_options()


async def test_verify_response_requires_username(temp_settings):
    responses = iter([{"verified": False}, {"verified": True}, {"verified": True, "username": "alice"}])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=next(responses))

    repository = AuthRepository(make_client(temp_settings, handler))
    with pytest.raises(AuthenticationFailed):
        await repository.verify_response({"id": "x"}, "cid")
    with pytest.raises(AuthenticationFailed):
        await repository.verify_response({"id": "x"}, "cid")
    assert await repository.verify_response({"id": "x"}, "cid") == "alice"


USERS = [
    {
        "username": "alice",
        "passkeysCount": 1,
        "passkeys": [{"id": "YWxpY2UtcGhvbmU...", "deviceType": "multi_device", "cloneSuspected": True}],
    }
]


async def test_list_users(temp_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert request.url.path == "/api/users"
        return httpx.Response(200, json=USERS)

    assert await make_client(temp_settings, handler).list_users() == USERS


async def test_cli_prints_users(temp_settings, capsys):
    client = make_client(temp_settings, lambda request: httpx.Response(200, json=USERS))

    await _list_users(client)

    assert capsys.readouterr().out.splitlines() == [
        "alice: 1 passkey(s)",
        "  YWxpY2UtcGhvbmU... multi_device [clone suspected]",
    ]
