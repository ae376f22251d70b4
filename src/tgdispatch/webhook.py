"""Webhook update acquisition served by a FastAPI app.

Requests are checked in order: source address (403), secret token (401),
content type (415), body (400). Handler failures are answered according to
:class:`WebhookErrorPolicy`: ``ACKNOWLEDGE`` returns 200 so Telegram does not
redeliver the update (the failure still reaches the error sink), ``REDELIVER``
returns 500 so Telegram retries it later. ``REDELIVER`` needs the handler
outcome before responding, so it cannot be combined with background mode.

A handler may answer through the HTTP response body with
:meth:`TypedUpdate.reply`. Requests are handled independently; nothing
depends on the order in which they arrive.
"""

from __future__ import annotations

import enum
import hmac
import ipaddress
from collections.abc import Callable, Iterable

import uvicorn
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from .client import BotClient
from .dispatcher import Dispatcher, Failed
from .errors import ErrorSink, HandlerError, TelegramUnauthorized, UpdateDecodeError
from .logging import get_logger
from .model import Update, WebhookInfo, decode_update
from .router import Router

logger = get_logger(__name__)

__all__ = [
    "SECRET_TOKEN_HEADER",
    "TELEGRAM_SUBNETS",
    "WebhookErrorPolicy",
    "WebhookServer",
    "real_ip",
]

SECRET_TOKEN_HEADER = "X-Telegram-Bot-Api-Secret-Token"

# Networks Telegram sends webhook requests from.
TELEGRAM_SUBNETS = ("149.154.160.0/20", "91.108.4.0/22")

Network = ipaddress.IPv4Network | ipaddress.IPv6Network


class WebhookErrorPolicy(str, enum.Enum):
    ACKNOWLEDGE = "acknowledge"
    REDELIVER = "redeliver"


def real_ip(request: Request) -> str | None:
    """Client address from ``X-Real-IP``, ``X-Forwarded-For`` or the socket peer."""
    header = request.headers.get("x-real-ip")
    if header:
        return header.strip()
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",", 1)[0].strip()
    return request.client.host if request.client is not None else None


def _parse_subnets(subnets: Iterable[str | Network]) -> tuple[Network, ...]:
    return tuple(ipaddress.ip_network(item, strict=False) for item in subnets)


def _text(status: int, body: str) -> Response:
    return PlainTextResponse(body, status_code=status)


class WebhookServer:
    def __init__(
        self,
        router: Router,
        client: BotClient,
        *,
        url: str | None = None,
        path: str = "/webhook",
        secret_token: str | None = None,
        drop_pending_updates: bool = False,
        error_policy: WebhookErrorPolicy = WebhookErrorPolicy.ACKNOWLEDGE,
        background: bool = False,
        allowed_updates: list[str] | None = None,
        max_connections: int | None = None,
        ip_address: str | None = None,
        security_subnets: Iterable[str | Network] | None = None,
        ip_from_request: Callable[[Request], str | None] = real_ip,
        error_sink: ErrorSink | None = None,
        handler_timeout: float | None = None,
    ) -> None:
        if not path.startswith("/"):
            raise ValueError(f"webhook path must start with '/': {path!r}")
        error_policy = WebhookErrorPolicy(error_policy)
        if background and error_policy is WebhookErrorPolicy.REDELIVER:
            raise ValueError(
                "error_policy 'redeliver' cannot be used with background processing"
            )
        self.client = client
        self.url = url
        self.path = path
        self.secret_token = secret_token or None
        self.drop_pending_updates = drop_pending_updates
        self.error_policy = error_policy
        self.background = background
        self.allowed_updates = allowed_updates
        self.max_connections = max_connections
        self.ip_address = ip_address
        self.security_subnets = _parse_subnets(security_subnets or ())
        self._ip_from_request = ip_from_request
        self._dispatcher = Dispatcher(
            router,
            client,
            error_sink=error_sink,
            handler_timeout=handler_timeout,
        )
        self._refusing: str | None = None
        self.app = FastAPI(openapi_url=None, docs_url=None, redoc_url=None)
        self.app.add_api_route(path, self.handle, methods=["POST"])

    @property
    def refusing(self) -> bool:
        return self._refusing is not None

    def _outdated(self, info: WebhookInfo) -> bool:
        if info.url != self.url:
            return True
        if self.max_connections is not None and info.max_connections != self.max_connections:
            return True
        if self.allowed_updates is not None and list(
            info.allowed_updates or []
        ) != list(self.allowed_updates):
            return True
        if self.ip_address and info.ip_address != self.ip_address:
            return True
        return self.drop_pending_updates and info.pending_update_count > 0

    async def setup(self, *, force: bool = False) -> bool:
        """Register the webhook with Telegram unless it is already current.

        Telegram does not report the secret token back, so a changed secret
        needs ``force=True``. With ``drop_pending_updates`` the backlog
        accumulated while offline is discarded by Telegram instead of being
        delivered on first connect. Returns True when ``setWebhook`` was called.
        """
        if not self.url:
            raise ValueError("webhook url is required for setup")
        info = await self.client.get_webhook_info()
        if not force and not self._outdated(info):
            logger.info("webhook.up_to_date", url=self.url)
            return False
        if self.drop_pending_updates:
            logger.info(
                "webhook.drop_pending_updates",
                url=self.url,
                pending=info.pending_update_count,
            )
        await self.client.set_webhook(
            self.url,
            secret_token=self.secret_token,
            drop_pending_updates=self.drop_pending_updates,
            allowed_updates=self.allowed_updates,
            max_connections=self.max_connections,
            ip_address=self.ip_address,
        )
        logger.info(
            "webhook.registered",
            url=self.url,
            allowed_updates=self.allowed_updates,
            secret=self.secret_token is not None,
        )
        return True

    def _address_ok(self, request: Request) -> bool:
        if not self.security_subnets:
            return True
        raw = self._ip_from_request(request)
        if not raw:
            return False
        try:
            address = ipaddress.ip_address(raw)
        except ValueError:
            return False
        return any(address in net for net in self.security_subnets)

    def _secret_ok(self, request: Request) -> bool:
        if self.secret_token is None:
            return True
        received = request.headers.get(SECRET_TOKEN_HEADER)
        if received is None:
            return False
        return hmac.compare_digest(
            received.encode("utf-8"), self.secret_token.encode("utf-8")
        )

    async def _process(self, update: Update, *, webhook_reply: bool = False) -> Response:
        context = self._dispatcher.context(update, webhook_reply=webhook_reply)
        result = await self._dispatcher.feed(update, context)
        if isinstance(result, Failed):
            cause = (
                result.error.error
                if isinstance(result.error, HandlerError)
                else result.error
            )
            if isinstance(cause, TelegramUnauthorized):
                self._refusing = cause.description
                logger.error("webhook.unauthorized", error=cause.description)
                return _text(503, "bot token rejected")
            if self.error_policy is WebhookErrorPolicy.REDELIVER:
                return _text(500, "handler failed")
        if context.reply is not None:
            logger.debug(
                "webhook.reply", update_id=update.update_id, method=context.reply["method"]
            )
            return JSONResponse(context.reply)
        return JSONResponse({"ok": True})

    async def handle(self, request: Request, tasks: BackgroundTasks) -> Response:
        if self._refusing is not None:
            return _text(503, "bot token rejected")
        if not self._address_ok(request):
            logger.warning(
                "webhook.rejected", reason="address", value=self._ip_from_request(request)
            )
            return _text(403, "security check failed")
        if not self._secret_ok(request):
            logger.warning("webhook.rejected", reason="secret_token")
            return _text(401, "security check failed")
        content_type = request.headers.get("content-type", "")
        if content_type.split(";", 1)[0].strip().lower() != "application/json":
            logger.warning("webhook.rejected", reason="content_type", value=content_type)
            return _text(415, "unsupported media type")
        body = await request.body()
        try:
            update = decode_update(body)
        except UpdateDecodeError as exc:
            logger.warning("webhook.rejected", reason="decode", error=str(exc))
            await self._dispatcher.report(exc, None)
            return _text(400, "failed to parse body")
        logger.debug("webhook.update", update_id=update.update_id)
        if self.background:
            tasks.add_task(self._process, update)
            return JSONResponse({"ok": True})
        return await self._process(update, webhook_reply=True)

    async def serve(
        self,
        host: str = "127.0.0.1",
        port: int = 8080,
        *,
        setup: bool = True,
        force_setup: bool = False,
    ) -> None:
        if setup:
            await self.setup(force=force_setup)
        config = uvicorn.Config(self.app, host=host, port=port, log_config=None)
        server = uvicorn.Server(config)
        logger.info("webhook.serving", host=host, port=port, path=self.path)
        await server.serve()
