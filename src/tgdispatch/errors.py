"""Error taxonomy shared by the acquisition layers, the router and sessions."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from .logging import get_logger

if TYPE_CHECKING:
    from .model import Update

logger = get_logger(__name__)


class TelegramError(Exception):
    """Base class for failures talking to the Bot API."""


class TelegramNetworkError(TelegramError):
    """The request never produced a usable HTTP response."""


class TelegramAPIError(TelegramError):
    def __init__(
        self,
        code: int,
        description: str,
        *,
        method: str | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"{code}: {description}")
        self.code = code
        self.description = description
        self.method = method
        self.parameters = parameters or {}


class TelegramUnauthorized(TelegramAPIError):
    """The bot token was rejected. Retrying will not help."""


class TelegramRetryAfter(TelegramAPIError):
    def __init__(
        self,
        retry_after: float,
        description: str | None = None,
        *,
        method: str | None = None,
    ) -> None:
        super().__init__(
            429,
            description or f"retry after {retry_after}",
            method=method,
            parameters={"retry_after": retry_after},
        )
        self.retry_after = float(retry_after)


class UpdateDecodeError(ValueError):
    def __init__(self, message: str, *, raw: Any = None) -> None:
        super().__init__(message)
        self.raw = raw


class HandlerError(Exception):
    """Wraps an exception raised by application code for one update."""

    def __init__(self, update: Update, error: BaseException) -> None:
        super().__init__(f"handler failed for update {update.update_id}: {error!r}")
        self.update = update
        self.error = error


class SessionStoreError(RuntimeError):
    pass


class SessionLoadError(SessionStoreError):
    def __init__(self, key: str, error: BaseException) -> None:
        super().__init__(f"failed to load session {key!r}: {error}")
        self.key = key
        self.error = error


class SessionSaveError(SessionStoreError):
    def __init__(self, key: str, error: BaseException) -> None:
        super().__init__(f"failed to save session {key!r}: {error}")
        self.key = key
        self.error = error


class PollerUnauthorized(RuntimeError):
    """Raised when the poller stops because the token was rejected."""

    def __init__(self, error: TelegramUnauthorized) -> None:
        super().__init__(f"polling stopped: {error.description}")
        self.error = error


ErrorSink = Callable[[BaseException, "Update | None"], Awaitable[None] | None]


async def log_error(error: BaseException, update: Update | None) -> None:
    """Default sink: one structured log line per failure."""
    cause = error.error if isinstance(error, HandlerError) else error
    logger.error(
        "dispatch.error",
        update_id=update.update_id if update is not None else None,
        error=str(cause),
        error_type=cause.__class__.__name__,
        exc_info=cause,
    )


async def report_error(
    sink: ErrorSink | None, error: BaseException, update: Update | None
) -> None:
    """Deliver ``error`` to ``sink``; a failing sink is logged, never raised."""
    target = sink if sink is not None else log_error
    try:
        result = target(error, update)
        if inspect.isawaitable(result):
            await result
    except Exception as exc:  # noqa: BLE001
        logger.exception(
            "dispatch.error_sink_failed",
            error=str(exc),
            error_type=exc.__class__.__name__,
        )
