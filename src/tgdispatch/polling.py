"""Long-polling update acquisition.

The poller owns the offset cursor. A batch is dispatched update by update in
server order and the cursor moves past it only once the whole batch has been
handed to the router, so a crash mid-batch can redeliver at most that batch
and never skips an update.
"""

from __future__ import annotations

import enum
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import anyio

from .client import BotClient
from .dispatcher import Dispatcher
from .errors import (
    ErrorSink,
    PollerUnauthorized,
    TelegramAPIError,
    TelegramNetworkError,
    TelegramRetryAfter,
    TelegramUnauthorized,
    UpdateDecodeError,
)
from .logging import get_logger
from .model import decode_update
from .router import Router

logger = get_logger(__name__)

__all__ = ["Backoff", "Poller", "PollerState"]

R = TypeVar("R")

DEFAULT_LIMIT = 100
DEFAULT_TIMEOUT_S = 50


class PollerState(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DISPATCHING = "dispatching"
    ERROR = "error"
    STOPPED = "stopped"


@dataclass(frozen=True, slots=True)
class Backoff:
    initial: float = 1.0
    maximum: float = 30.0
    factor: float = 2.0
    jitter: float = 0.1

    def __post_init__(self) -> None:
        if self.initial < 0 or self.maximum < self.initial:
            raise ValueError("backoff bounds must satisfy 0 <= initial <= maximum")
        if not 0 <= self.jitter <= 1:
            raise ValueError("backoff jitter must be within [0, 1]")

    def delay(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        try:
            base = min(self.maximum, self.initial * self.factor**attempt)
        except OverflowError:
            base = self.maximum
        spread = base * self.jitter * (2 * rand() - 1)
        return min(self.maximum, max(0.0, base + spread))


class Poller:
    def __init__(
        self,
        router: Router,
        client: BotClient,
        *,
        limit: int = DEFAULT_LIMIT,
        timeout_s: int = DEFAULT_TIMEOUT_S,
        allowed_updates: list[str] | None = None,
        backoff: Backoff | None = None,
        error_sink: ErrorSink | None = None,
        handler_timeout: float | None = None,
        drop_pending_updates: bool = False,
        remove_webhook: bool = True,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
        rand: Callable[[], float] = random.random,
    ) -> None:
        if not 1 <= limit <= 100:
            raise ValueError("limit must be within 1..100")
        if timeout_s < 0:
            raise ValueError("timeout_s must not be negative")
        self.client = client
        self.limit = limit
        self.timeout_s = timeout_s
        self.allowed_updates = allowed_updates
        self.backoff = backoff or Backoff()
        self.drop_pending_updates = drop_pending_updates
        self.remove_webhook = remove_webhook
        self._dispatcher = Dispatcher(
            router,
            client,
            error_sink=error_sink,
            handler_timeout=handler_timeout,
        )
        self._sleep = sleep
        self._rand = rand
        self._offset: int | None = None
        self._state = PollerState.IDLE
        self._stop_requested = False
        self._wait_scope: anyio.CancelScope | None = None

    @property
    def offset(self) -> int | None:
        return self._offset

    @property
    def state(self) -> PollerState:
        return self._state

    def stop(self) -> None:
        """Ask the loop to finish; interrupts the long-poll wait or a backoff."""
        self._stop_requested = True
        if self._wait_scope is not None:
            self._wait_scope.cancel()

    async def _interruptible(self, func: Callable[[], Awaitable[R]]) -> tuple[bool, R | None]:
        if self._stop_requested:
            return False, None
        with anyio.CancelScope() as scope:
            self._wait_scope = scope
            try:
                return True, await func()
            finally:
                self._wait_scope = None
        return False, None

    async def _backoff(self, attempt: int, exc: Exception, *, stage: str) -> None:
        self._state = PollerState.ERROR
        if isinstance(exc, TelegramRetryAfter):
            delay = exc.retry_after
        else:
            delay = self.backoff.delay(attempt, self._rand)
        logger.warning(
            "poller.request_failed",
            stage=stage,
            attempt=attempt + 1,
            delay=round(delay, 3),
            error=str(exc),
            error_type=exc.__class__.__name__,
        )
        await self._interruptible(lambda: self._sleep(delay))
        self._state = PollerState.IDLE

    async def _retrying(self, stage: str, func: Callable[[], Awaitable[R]]) -> tuple[bool, R | None]:
        attempt = 0
        while not self._stop_requested:
            try:
                completed, result = await self._interruptible(func)
            except TelegramUnauthorized as exc:
                logger.error("poller.unauthorized", stage=stage, error=exc.description)
                raise PollerUnauthorized(exc) from exc
            except (TelegramNetworkError, TelegramAPIError) as exc:
                await self._backoff(attempt, exc, stage=stage)
                attempt += 1
                continue
            return completed, result
        return False, None

    async def _prepare(self) -> None:
        if self.remove_webhook:
            completed, info = await self._retrying("get_webhook_info", self.client.get_webhook_info)
            if not completed or info is None:
                return
            if info.url:
                await self._retrying(
                    "delete_webhook",
                    lambda: self.client.delete_webhook(
                        drop_pending_updates=self.drop_pending_updates
                    ),
                )
                logger.info(
                    "poller.webhook_removed",
                    url=info.url,
                    dropped_pending=self.drop_pending_updates,
                    pending=info.pending_update_count,
                )
                return
        if self.drop_pending_updates:
            await self._drain_backlog()

    async def _drain_backlog(self) -> None:
        drained = 0
        while not self._stop_requested:
            completed, updates = await self._retrying(
                "drain_backlog",
                lambda: self.client.get_updates(
                    offset=self._offset,
                    limit=self.limit,
                    timeout_s=0,
                    allowed_updates=self.allowed_updates,
                ),
            )
            if not completed or not updates:
                break
            last = updates[-1].get("update_id")
            if not isinstance(last, int):
                break
            self._offset = last + 1
            drained += len(updates)
        logger.info("poller.backlog_dropped", count=drained, offset=self._offset)

    async def _dispatch_batch(self, items: list[Any]) -> None:
        self._state = PollerState.DISPATCHING
        last_id: int | None = None
        for item in items:
            raw_id = item.get("update_id") if isinstance(item, dict) else None
            if isinstance(raw_id, int) and (
                (self._offset is not None and raw_id < self._offset)
                or (last_id is not None and raw_id <= last_id)
            ):
                logger.debug("poller.duplicate_skipped", update_id=raw_id)
                continue
            try:
                update = decode_update(item)
            except UpdateDecodeError as exc:
                logger.warning("poller.decode_failed", update_id=raw_id, error=str(exc))
                await self._dispatcher.report(exc, None)
                if isinstance(raw_id, int):
                    last_id = raw_id if last_id is None else max(last_id, raw_id)
                continue
            last_id = update.update_id if last_id is None else max(last_id, update.update_id)
            await self._dispatcher.feed(update)
        if last_id is not None:
            self._offset = last_id + 1

    async def _fetch(self) -> list[Any]:
        self._state = PollerState.FETCHING
        return await self.client.get_updates(
            offset=self._offset,
            limit=self.limit,
            timeout_s=self.timeout_s,
            allowed_updates=self.allowed_updates,
        )

    async def run(self) -> None:
        """Poll until :meth:`stop` is called or the surrounding scope is cancelled.

        Raises :class:`PollerUnauthorized` when the token is rejected.
        """
        logger.info(
            "poller.started",
            limit=self.limit,
            timeout_s=self.timeout_s,
            allowed_updates=self.allowed_updates,
        )
        try:
            await self._prepare()
            while not self._stop_requested:
                completed, items = await self._retrying("get_updates", self._fetch)
                if not completed:
                    break
                if items:
                    logger.debug("poller.batch", size=len(items), offset=self._offset)
                    # a started batch always finishes so the offset stays consistent
                    with anyio.CancelScope(shield=True):
                        await self._dispatch_batch(items)
                self._state = PollerState.IDLE
        finally:
            self._state = PollerState.STOPPED
            logger.info("poller.stopped", offset=self._offset)
