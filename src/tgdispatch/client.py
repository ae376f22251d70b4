from __future__ import annotations

import re
from typing import Any, Protocol

import httpx
import msgspec

from .errors import (
    TelegramAPIError,
    TelegramNetworkError,
    TelegramRetryAfter,
    TelegramUnauthorized,
)
from .logging import get_logger
from .model import WebhookInfo

logger = get_logger(__name__)

__all__ = ["BotClient", "TelegramClient"]


class BotClient(Protocol):
    async def close(self) -> None: ...

    async def call(self, method: str, params: dict[str, Any] | None = None) -> Any: ...

    async def get_updates(
        self,
        offset: int | None,
        limit: int | None = None,
        timeout_s: int = 50,
        allowed_updates: list[str] | None = None,
    ) -> list[dict[str, Any]]: ...

    async def set_webhook(
        self,
        url: str,
        *,
        secret_token: str | None = None,
        drop_pending_updates: bool = False,
        allowed_updates: list[str] | None = None,
        max_connections: int | None = None,
        ip_address: str | None = None,
    ) -> bool: ...

    async def delete_webhook(self, *, drop_pending_updates: bool = False) -> bool: ...

    async def get_webhook_info(self) -> WebhookInfo: ...

    async def get_me(self) -> dict[str, Any]: ...

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_to_message_id: int | None = None,
        parse_mode: str | None = None,
        reply_markup: dict[str, Any] | None = None,
    ) -> dict[str, Any]: ...

    async def answer_callback_query(
        self,
        callback_query_id: str,
        text: str | None = None,
        show_alert: bool = False,
    ) -> bool: ...


_RETRY_AFTER_RE = re.compile(r"retry after (\d+)", re.IGNORECASE)

# Codes the Bot API returns when the token is invalid or revoked.
_UNAUTHORIZED_CODES = frozenset({401, 404})


def _retry_after_from_payload(payload: dict[str, Any]) -> float | None:
    params = payload.get("parameters")
    if isinstance(params, dict):
        retry_after = params.get("retry_after")
        if isinstance(retry_after, (int, float)):
            return float(retry_after)
    description = payload.get("description")
    if isinstance(description, str):
        match = _RETRY_AFTER_RE.search(description)
        if match:
            return float(match.group(1))
    return None


def _error_from_payload(method: str, status: int, payload: dict[str, Any]) -> TelegramAPIError:
    code = payload.get("error_code")
    if not isinstance(code, int):
        code = status
    description = str(payload.get("description") or "unknown error")
    retry_after = _retry_after_from_payload(payload)
    if code == 429 and retry_after is not None:
        return TelegramRetryAfter(retry_after, description, method=method)
    if code in _UNAUTHORIZED_CODES:
        return TelegramUnauthorized(code, description, method=method)
    params = payload.get("parameters")
    return TelegramAPIError(
        code,
        description,
        method=method,
        parameters=params if isinstance(params, dict) else None,
    )


class TelegramClient:
    def __init__(
        self,
        token: str,
        timeout_s: float = 120,
        client: httpx.AsyncClient | None = None,
        base_url: str = "https://api.telegram.org",
    ) -> None:
        if not token:
            raise ValueError("Telegram token is empty")
        self._base = f"{base_url.rstrip('/')}/bot{token}"
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(
        self,
        method: str,
        json_data: dict[str, Any],
        *,
        timeout_s: float | None = None,
    ) -> Any:
        logger.debug("telegram.request", method=method, payload=json_data)
        kwargs: dict[str, Any] = {"json": json_data}
        if timeout_s is not None:
            kwargs["timeout"] = timeout_s
        try:
            resp = await self._client.post(f"{self._base}/{method}", **kwargs)
        except httpx.HTTPError as e:
            logger.warning(
                "telegram.network_error",
                method=method,
                error=str(e),
                error_type=e.__class__.__name__,
            )
            raise TelegramNetworkError(f"{method}: {e}") from e

        try:
            payload = resp.json()
        except ValueError:
            payload = None

        if not isinstance(payload, dict):
            if not resp.is_success:
                logger.error(
                    "telegram.http_error",
                    method=method,
                    status=resp.status_code,
                    body=resp.text,
                )
                if resp.status_code in _UNAUTHORIZED_CODES:
                    raise TelegramUnauthorized(resp.status_code, resp.text, method=method)
                raise TelegramNetworkError(f"{method}: HTTP {resp.status_code}")
            logger.error("telegram.invalid_payload", method=method, body=resp.text)
            raise TelegramNetworkError(f"{method}: invalid response payload")

        if not payload.get("ok"):
            error = _error_from_payload(method, resp.status_code, payload)
            if isinstance(error, TelegramRetryAfter):
                logger.info(
                    "telegram.rate_limited",
                    method=method,
                    retry_after=error.retry_after,
                )
            elif error.code >= 500:
                logger.error(
                    "telegram.server_error",
                    method=method,
                    code=error.code,
                    description=error.description,
                )
                raise TelegramNetworkError(f"{method}: {error}") from error
            else:
                logger.error(
                    "telegram.api_error",
                    method=method,
                    code=error.code,
                    description=error.description,
                )
            raise error

        logger.debug("telegram.response", method=method, payload=payload)
        return payload.get("result")

    async def call(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Invoke any Bot API method; returns the raw ``result`` field."""
        return await self._post(method, params or {})

    async def get_updates(
        self,
        offset: int | None,
        limit: int | None = None,
        timeout_s: int = 50,
        allowed_updates: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"timeout": timeout_s}
        if offset is not None:
            params["offset"] = offset
        if limit is not None:
            params["limit"] = limit
        if allowed_updates is not None:
            params["allowed_updates"] = allowed_updates
        # the HTTP timeout has to outlive the server-side long-poll wait
        result = await self._post("getUpdates", params, timeout_s=timeout_s + 10)
        if not isinstance(result, list):
            raise TelegramNetworkError("getUpdates: expected a list of updates")
        return result

    async def set_webhook(
        self,
        url: str,
        *,
        secret_token: str | None = None,
        drop_pending_updates: bool = False,
        allowed_updates: list[str] | None = None,
        max_connections: int | None = None,
        ip_address: str | None = None,
    ) -> bool:
        params: dict[str, Any] = {"url": url}
        if secret_token is not None:
            params["secret_token"] = secret_token
        if drop_pending_updates:
            params["drop_pending_updates"] = True
        if allowed_updates is not None:
            params["allowed_updates"] = allowed_updates
        if max_connections is not None:
            params["max_connections"] = max_connections
        if ip_address is not None:
            params["ip_address"] = ip_address
        return bool(await self._post("setWebhook", params))

    async def delete_webhook(self, *, drop_pending_updates: bool = False) -> bool:
        params: dict[str, Any] = {}
        if drop_pending_updates:
            params["drop_pending_updates"] = True
        return bool(await self._post("deleteWebhook", params))

    async def get_webhook_info(self) -> WebhookInfo:
        result = await self._post("getWebhookInfo", {})
        return msgspec.convert(result or {}, type=WebhookInfo)

    async def get_me(self) -> dict[str, Any]:
        result = await self._post("getMe", {})
        return result if isinstance(result, dict) else {}

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_to_message_id: int | None = None,
        parse_mode: str | None = None,
        reply_markup: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
        }
        if reply_to_message_id is not None:
            params["reply_to_message_id"] = reply_to_message_id
        if parse_mode is not None:
            params["parse_mode"] = parse_mode
        if reply_markup is not None:
            params["reply_markup"] = reply_markup
        result = await self._post("sendMessage", params)
        return result if isinstance(result, dict) else {}

    async def answer_callback_query(
        self,
        callback_query_id: str,
        text: str | None = None,
        show_alert: bool = False,
    ) -> bool:
        params: dict[str, Any] = {"callback_query_id": callback_query_id}
        if text is not None:
            params["text"] = text
        if show_alert:
            params["show_alert"] = True
        return bool(await self._post("answerCallbackQuery", params))
