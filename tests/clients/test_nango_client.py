"""Tests for the async Nango API client."""

import json

import httpx
import pytest

from nango_relay.clients.nango import (
    ConnectSessionEndUser,
    ConnectSessionRequest,
    NangoAPIError,
    NangoClient,
)


class _MockTransport(httpx.AsyncBaseTransport):
    def __init__(self, responses: list[httpx.Response | Exception]) -> None:
        self._responses = responses
        self.requests: list[httpx.Request] = []

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self._responses:
            raise RuntimeError("No mock responses left")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _nango_from_responses(
    responses: list[httpx.Response | Exception], max_retries: int = 3
) -> tuple[NangoClient, _MockTransport]:
    transport = _MockTransport(responses)
    http_client = httpx.AsyncClient(transport=transport, base_url="https://api.nango.test")
    nango = NangoClient(secret_key="sk-test", http_client=http_client, max_retries=max_retries)
    return nango, transport


@pytest.fixture(autouse=True)
def retry_delays(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Record the computed retry delays and retry immediately."""
    delays: list[float] = []
    original = NangoClient._sleep_time_from_response

    def _record(self, response, attempt):
        delays.append(original(self, response, attempt))
        return 0

    monkeypatch.setattr(NangoClient, "_sleep_time_from_response", _record)
    return delays


def test_requires_secret_key():
    with pytest.raises(ValueError):
        NangoClient(secret_key="")


@pytest.mark.asyncio
async def test_owned_client_sends_bearer_token():
    nango = NangoClient(secret_key="sk-test", host="https://api.nango.test/")
    try:
        assert nango.host == "https://api.nango.test"
        assert nango._client.headers["Authorization"] == "Bearer sk-test"
    finally:
        await nango.close()


@pytest.mark.asyncio
async def test_create_session():
    nango, transport = _nango_from_responses(
        [
            httpx.Response(
                201, json={"data": {"token": "tok_123", "expires_at": "2026-01-01T00:30:00Z"}}
            )
        ]
    )

    session = await nango.create_session(
        ConnectSessionRequest(end_user=ConnectSessionEndUser(id="user-123", email="u@x.io"))
    )

    assert session.session_token == "tok_123"
    assert session.expires_at == "2026-01-01T00:30:00Z"
    assert session.model_dump(by_alias=True) == {
        "sessionToken": "tok_123",
        "expiresAt": "2026-01-01T00:30:00Z",
    }
    request = transport.requests[0]
    assert request.method == "POST"
    assert request.url.path == "/connect/sessions"
    assert json.loads(request.content) == {"end_user": {"id": "user-123", "email": "u@x.io"}}


@pytest.mark.asyncio
async def test_create_session_raises_on_rejection():
    nango, _ = _nango_from_responses([httpx.Response(400, json={"error": "bad end_user"})])

    with pytest.raises(NangoAPIError) as exc_info:
        await nango.create_session(
            ConnectSessionRequest(end_user=ConnectSessionEndUser(id="user-123"))
        )

    assert exc_info.value.status_code == 400
    assert exc_info.value.response_body == {"error": "bad end_user"}


@pytest.mark.asyncio
async def test_list_integrations():
    nango, transport = _nango_from_responses(
        [
            httpx.Response(
                200,
                json={
                    "data": [
                        {
                            "unique_key": "slack-prod",
                            "provider": "slack",
                            "display_name": "Slack",
                            "logo": "https://logo/slack.svg",
                        },
                        {"provider": "broken"},
                    ]
                },
            )
        ]
    )

    integrations = await nango.list_integrations()

    assert [i.model_dump() for i in integrations] == [
        {
            "id": "slack-prod",
            "provider": "slack",
            "display_name": "Slack",
            "logo_url": "https://logo/slack.svg",
        }
    ]
    assert transport.requests[0].url.path == "/integrations"


@pytest.mark.asyncio
async def test_list_integrations_legacy_configs_key():
    nango, _ = _nango_from_responses(
        [httpx.Response(200, json={"configs": [{"unique_key": "gh", "provider": "github"}]})]
    )

    integrations = await nango.list_integrations()

    assert [i.id for i in integrations] == ["gh"]


@pytest.mark.asyncio
async def test_list_integrations_returns_empty_on_failure():
    nango, _ = _nango_from_responses([httpx.Response(401, json={"error": "unauthorized"})])
    assert await nango.list_integrations() == []


@pytest.mark.asyncio
async def test_get_connection():
    detail = {"connection_id": "conn-123", "credentials": {"type": "OAUTH2"}}
    nango, transport = _nango_from_responses([httpx.Response(200, json=detail)])

    result = await nango.get_connection("conn-123", "slack-prod")

    assert result == detail
    request = transport.requests[0]
    assert request.url.path == "/connection/conn-123"
    assert request.url.params["provider_config_key"] == "slack-prod"


@pytest.mark.asyncio
async def test_get_connection_returns_none_on_not_found():
    nango, _ = _nango_from_responses([httpx.Response(404, json={"error": "not found"})])
    assert await nango.get_connection("conn-404", "slack-prod") is None


@pytest.mark.asyncio
async def test_get_connection_returns_none_on_bad_json():
    nango, _ = _nango_from_responses([httpx.Response(200, content=b"<html>")])
    assert await nango.get_connection("conn-123", "slack-prod") is None


@pytest.mark.asyncio
async def test_delete_connection():
    nango, transport = _nango_from_responses([httpx.Response(204)])

    assert await nango.delete_connection("conn-123", "slack-prod") is True
    assert transport.requests[0].method == "DELETE"


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["get_connection", "delete_connection"])
async def test_connection_id_escaped_in_path(method):
    nango, transport = _nango_from_responses([httpx.Response(200, json={})])

    await getattr(nango, method)("a/../../sync/trigger", "mine")

    raw_path = transport.requests[0].url.raw_path
    assert raw_path.startswith(b"/connection/a%2F..%2F..%2Fsync%2Ftrigger?")


@pytest.mark.asyncio
async def test_delete_connection_without_key_makes_no_request():
    nango, transport = _nango_from_responses([])

    assert await nango.delete_connection("conn-123") is True
    assert transport.requests == []


@pytest.mark.asyncio
async def test_delete_connection_returns_false_on_failure():
    nango, _ = _nango_from_responses([httpx.Response(403)])
    assert await nango.delete_connection("conn-123", "slack-prod") is False


@pytest.mark.asyncio
async def test_trigger_sync_uses_default_sync_name():
    nango, transport = _nango_from_responses([httpx.Response(200, json={"success": True})])

    result = await nango.trigger_sync("conn-123", "slack-prod")

    assert result == {"success": True}
    assert json.loads(transport.requests[0].content) == {
        "provider_config_key": "slack-prod",
        "syncs": ["default"],
        "connection_id": "conn-123",
    }


@pytest.mark.asyncio
async def test_trigger_sync_returns_none_on_failure():
    nango, _ = _nango_from_responses([httpx.Response(400)])
    assert await nango.trigger_sync("conn-123", "slack-prod", "messages") is None


@pytest.mark.asyncio
async def test_retries_rate_limit_honoring_retry_after(retry_delays):
    nango, transport = _nango_from_responses(
        [
            httpx.Response(429, headers={"Retry-After": "7"}),
            httpx.Response(200, json={"connection_id": "conn-123"}),
        ]
    )

    result = await nango.get_connection("conn-123", "slack-prod")

    assert result == {"connection_id": "conn-123"}
    assert len(transport.requests) == 2
    assert retry_delays == [7.0]


@pytest.mark.asyncio
async def test_retries_transport_errors(retry_delays):
    nango, transport = _nango_from_responses(
        [
            httpx.ConnectError("connection refused"),
            httpx.Response(200, json={"connection_id": "conn-123"}),
        ]
    )

    assert await nango.get_connection("conn-123", "slack-prod") == {"connection_id": "conn-123"}
    assert len(transport.requests) == 2
    assert 1.0 <= retry_delays[0] <= 1.25


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    nango, transport = _nango_from_responses(
        [httpx.Response(503), httpx.Response(503)], max_retries=2
    )

    assert await nango.get_connection("conn-123", "slack-prod") is None
    assert len(transport.requests) == 2


@pytest.mark.asyncio
async def test_does_not_retry_client_errors():
    nango, transport = _nango_from_responses([httpx.Response(404), httpx.Response(200)])

    assert await nango.get_connection("conn-123", "slack-prod") is None
    assert len(transport.requests) == 1


@pytest.mark.asyncio
async def test_close_leaves_injected_client_open():
    nango, _ = _nango_from_responses([])
    async with nango:
        pass
    assert not nango._client.is_closed
