"""Shared entry point the poller and the webhook server feed updates through."""

from __future__ import annotations

from dataclasses import dataclass

import anyio

from .client import BotClient
from .errors import ErrorSink, HandlerError, report_error
from .logging import get_logger
from .model import Update
from .router import UNMATCHED, DispatchResult, Router
from .update import TypedUpdate, UpdateContext

logger = get_logger(__name__)

__all__ = ["Dispatcher", "Failed", "FeedResult"]


@dataclass(frozen=True, slots=True)
class Failed:
    error: BaseException

    def __bool__(self) -> bool:
        return False


FeedResult = DispatchResult | Failed


class Dispatcher:
    """Builds the per-update context and reports handler failures to one sink."""

    def __init__(
        self,
        router: Router,
        client: BotClient | None,
        *,
        error_sink: ErrorSink | None = None,
        handler_timeout: float | None = None,
    ) -> None:
        self.router = router
        self.client = client
        self.error_sink = error_sink
        self.handler_timeout = handler_timeout

    async def report(self, error: BaseException, update: Update | None) -> None:
        await report_error(self.error_sink, error, update)

    def context(self, update: Update, *, webhook_reply: bool = False) -> UpdateContext:
        return UpdateContext(
            client=self.client,
            error_sink=self.error_sink,
            update=update,
            webhook_reply=webhook_reply,
        )

    async def feed(
        self, update: Update, context: UpdateContext | None = None
    ) -> FeedResult:
        deadline = (
            anyio.current_time() + self.handler_timeout
            if self.handler_timeout is not None
            else float("inf")
        )
        if context is None:
            context = self.context(update)
        typed = TypedUpdate.from_update(update, context)
        result: FeedResult = UNMATCHED
        try:
            with anyio.CancelScope(deadline=deadline) as scope:
                context.cancel_scope = scope
                result = await self.router.dispatch(typed)
        except Exception as exc:  # noqa: BLE001
            error = HandlerError(update, exc)
            await self.report(error, update)
            return Failed(error)
        if scope.cancelled_caught:
            if anyio.current_time() >= scope.deadline:
                cause: BaseException = TimeoutError(
                    f"handler exceeded {self.handler_timeout}s"
                )
            else:
                cause = RuntimeError("handler cancelled its own scope")
            error = HandlerError(update, cause)
            await self.report(error, update)
            return Failed(error)
        if result is UNMATCHED:
            logger.debug(
                "dispatch.unmatched",
                update_id=update.update_id,
                kind=typed.kind.value,
            )
        return result
