import json
from collections.abc import Callable

import httpx
import pytest

from tgdispatch.client import TelegramClient
from tgdispatch.errors import (
    TelegramAPIError,
    TelegramNetworkError,
    TelegramRetryAfter,
    TelegramUnauthorized,
)

TOKEN = "123:abcDEF_ghij"


def _client(
    handler: Callable[[httpx.Request], httpx.Response],
) -> tuple[TelegramClient, httpx.AsyncClient]:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TelegramClient(TOKEN, client=http), http


@pytest.mark.anyio
async def test_get_updates_sends_offset_and_extends_timeout() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200, json={"ok": True, "result": [{"update_id": 1}]}, request=request
        )

    tg, http = _client(handler)
    try:
        result = await tg.get_updates(
            offset=5, limit=10, timeout_s=30, allowed_updates=["message"]
        )
    finally:
        await http.aclose()

    assert result == [{"update_id": 1}]
    request = seen[0]
    assert request.url.path == f"/bot{TOKEN}/getUpdates"
    assert json.loads(request.content) == {
        "timeout": 30,
        "offset": 5,
        "limit": 10,
        "allowed_updates": ["message"],
    }
    assert request.extensions["timeout"]["read"] == 40


@pytest.mark.anyio
async def test_retry_after_is_raised() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            429,
            json={
                "ok": False,
                "error_code": 429,
                "description": "Too Many Requests: retry after 3",
                "parameters": {"retry_after": 3},
            },
            request=request,
        )

    tg, http = _client(handler)
    try:
        with pytest.raises(TelegramRetryAfter) as excinfo:
            await tg.send_message(1, "hi")
    finally:
        await http.aclose()

    assert excinfo.value.retry_after == 3.0
    assert excinfo.value.method == "sendMessage"


@pytest.mark.anyio
@pytest.mark.parametrize("code", [401, 404])
async def test_unauthorized_is_raised(code: int) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            code,
            json={"ok": False, "error_code": code, "description": "Unauthorized"},
            request=request,
        )

    tg, http = _client(handler)
    try:
        with pytest.raises(TelegramUnauthorized):
            await tg.get_me()
    finally:
        await http.aclose()


@pytest.mark.anyio
async def test_bad_request_is_api_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={"ok": False, "error_code": 400, "description": "Bad Request: chat not found"},
            request=request,
        )

    tg, http = _client(handler)
    try:
        with pytest.raises(TelegramAPIError) as excinfo:
            await tg.send_message(1, "hi")
    finally:
        await http.aclose()

    assert type(excinfo.value) is TelegramAPIError
    assert excinfo.value.code == 400
    assert "chat not found" in excinfo.value.description


@pytest.mark.anyio
async def test_server_errors_are_network_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="oops", request=request)

    tg, http = _client(handler)
    try:
        with pytest.raises(TelegramNetworkError):
            await tg.get_updates(offset=None)
    finally:
        await http.aclose()


@pytest.mark.anyio
async def test_transport_errors_are_network_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    tg, http = _client(handler)
    try:
        with pytest.raises(TelegramNetworkError, match="getUpdates"):
            await tg.get_updates(offset=None)
    finally:
        await http.aclose()


@pytest.mark.anyio
async def test_webhook_methods() -> None:
    requests: list[tuple[str, dict]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        requests.append((method, json.loads(request.content)))
        if method == "getWebhookInfo":
            result = {
                "url": "https://example.com/hook",
                "has_custom_certificate": False,
                "pending_update_count": 4,
                "unknown_field": 1,
            }
        else:
            result = True
        return httpx.Response(200, json={"ok": True, "result": result}, request=request)

    tg, http = _client(handler)
    try:
        assert await tg.set_webhook(
            "https://example.com/hook", secret_token="s", drop_pending_updates=True
        )
        info = await tg.get_webhook_info()
        assert await tg.delete_webhook()
    finally:
        await http.aclose()

    assert info.url == "https://example.com/hook"
    assert info.pending_update_count == 4
    assert requests == [
        (
            "setWebhook",
            {
                "url": "https://example.com/hook",
                "secret_token": "s",
                "drop_pending_updates": True,
            },
        ),
        ("getWebhookInfo", {}),
        ("deleteWebhook", {}),
    ]


@pytest.mark.anyio
async def test_close_leaves_injected_client_open() -> None:
    http = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda r: httpx.Response(200, json={}))
    )
    tg = TelegramClient(TOKEN, client=http)

    await tg.close()

    assert not http.is_closed
    await http.aclose()


def test_empty_token_raises() -> None:
    with pytest.raises(ValueError, match="empty"):
        TelegramClient("")


@pytest.mark.anyio
async def test_call_invokes_arbitrary_method() -> None:
    seen: list[tuple[str, dict]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path.rsplit("/", 1)[-1], json.loads(request.content)))
        return httpx.Response(200, json={"ok": True, "result": True}, request=request)

    tg, http = _client(handler)
    try:
        assert await tg.call("sendChatAction", {"chat_id": 1, "action": "typing"})
        assert await tg.call("logOut") is True
    finally:
        await http.aclose()

    assert seen == [
        ("sendChatAction", {"chat_id": 1, "action": "typing"}),
        ("logOut", {}),
    ]
