"""Session state injection as router middleware.

The manager loads the state stored for the conversation an update belongs to,
exposes it to filters and handlers through the update context, and writes it
back once the handler chain has returned:

* state equal to the initial value is deleted from the store,
* unchanged state is not written again,
* ``Session.discard()`` drops changes, ``Session.delete()`` removes the entry.

Persisting happens even when the handler raised. Load failures stop the chain
before any handler runs; save failures are reported to the error sink and
never replace the handler's own outcome.
"""

from __future__ import annotations

import copy
import enum
from collections.abc import Callable
from typing import Any, Generic, TypeVar

import anyio
import msgspec

from ..errors import SessionLoadError, SessionSaveError
from ..filters import Filter, FilterFunc
from ..logging import get_logger
from ..router import DispatchResult, RouterHandler
from ..update import TypedUpdate
from .store import MemoryStore, SessionStore

logger = get_logger(__name__)

__all__ = [
    "KeyFunc",
    "Session",
    "SessionManager",
    "chat_key",
    "chat_sender_key",
    "sender_key",
]

T = TypeVar("T")

KeyFunc = Callable[[TypedUpdate], str | None]


def chat_key(update: TypedUpdate) -> str | None:
    chat = update.chat
    return str(chat.id) if chat is not None else None


def sender_key(update: TypedUpdate) -> str | None:
    sender = update.sender
    return str(sender.id) if sender is not None else None


def chat_sender_key(update: TypedUpdate) -> str | None:
    chat = update.chat
    sender = update.sender
    if chat is None or sender is None:
        return None
    return f"{chat.id}:{sender.id}"


class _Action(enum.Enum):
    SAVE = "save"
    DISCARD = "discard"
    DELETE = "delete"


class Session(Generic[T]):
    __slots__ = ("key", "state", "_action", "_initial")

    def __init__(self, key: str, state: T, initial: T) -> None:
        self.key = key
        self.state = state
        self._initial = initial
        self._action = _Action.SAVE

    def discard(self) -> None:
        """Leave the stored value untouched for this update."""
        self._action = _Action.DISCARD

    def delete(self) -> None:
        """Remove the stored value once the handler returns."""
        self._action = _Action.DELETE

    def reset(self) -> None:
        self.state = copy.deepcopy(self._initial)
        self._action = _Action.SAVE


class SessionManager(Generic[T]):
    def __init__(
        self,
        initial: T,
        *,
        store: SessionStore | None = None,
        key_func: KeyFunc = chat_key,
        state_type: type[T] | None = None,
        encode: Callable[[T], bytes] | None = None,
        decode: Callable[[bytes], T] | None = None,
    ) -> None:
        self.initial = initial
        self.store: SessionStore = store if store is not None else MemoryStore()
        self.key_func = key_func
        state_type = state_type if state_type is not None else type(initial)
        self._encode = encode or msgspec.json.encode
        self._decode = decode or (lambda data: msgspec.json.decode(data, type=state_type))
        self._initial_bytes = self._encode(initial)

    def session(self, update: TypedUpdate) -> Session[T] | None:
        return update.context.values.get(self)

    def get(self, update: TypedUpdate) -> T | None:
        session = self.session(update)
        return session.state if session is not None else None

    def filter(self, check: Callable[[T], bool]) -> Filter:
        def evaluate(update: TypedUpdate) -> bool:
            session = self.session(update)
            return session is not None and bool(check(session.state))

        return FilterFunc(evaluate)

    async def load(self, key: str) -> tuple[T, bytes | None]:
        try:
            data = await self.store.get(key)
            if data is None:
                return copy.deepcopy(self.initial), None
            return self._decode(data), data
        except Exception as exc:
            raise SessionLoadError(key, exc) from exc

    async def _persist(self, session: Session[T], loaded: bytes | None) -> None:
        key = session.key
        if session._action is _Action.DISCARD:
            return
        if session._action is _Action.DELETE:
            await self.store.delete(key)
            logger.debug("session.deleted", key=key)
            return
        data = self._encode(session.state)
        if data == self._initial_bytes:
            if loaded is not None:
                await self.store.delete(key)
                logger.debug("session.reset", key=key)
            return
        if data != loaded:
            await self.store.set(key, data)
            logger.debug("session.saved", key=key, size=len(data))

    def __call__(self, next_handler: RouterHandler) -> RouterHandler:
        async def handler(update: TypedUpdate) -> DispatchResult:
            key = self.key_func(update)
            if key is None:
                return await next_handler(update)
            state, loaded = await self.load(key)
            session = Session(key, state, self.initial)
            update.context.values[self] = session
            try:
                return await next_handler(update)
            finally:
                try:
                    with anyio.CancelScope(shield=True):
                        await self._persist(session, loaded)
                except Exception as exc:  # noqa: BLE001
                    error = SessionSaveError(key, exc)
                    logger.error(
                        "session.save_failed",
                        key=key,
                        error=str(exc),
                        error_type=exc.__class__.__name__,
                    )
                    await update.context.report(error)
                finally:
                    update.context.values.pop(self, None)

        return handler
