"""Classification of raw updates into typed, handler-facing views."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

import anyio

from .errors import ErrorSink, report_error
from .model import (
    CallbackQuery,
    Chat,
    ChatJoinRequest,
    ChatMemberUpdated,
    ChosenInlineResult,
    InlineQuery,
    Message,
    Poll,
    PollAnswer,
    PreCheckoutQuery,
    ShippingQuery,
    Update,
    User,
)

if TYPE_CHECKING:
    from .client import BotClient

__all__ = [
    "UpdateContext",
    "UpdateKind",
    "TypedUpdate",
    "classify",
]


class UpdateKind(str, enum.Enum):
    MESSAGE = "message"
    EDITED_MESSAGE = "edited_message"
    CHANNEL_POST = "channel_post"
    EDITED_CHANNEL_POST = "edited_channel_post"
    INLINE_QUERY = "inline_query"
    CHOSEN_INLINE_RESULT = "chosen_inline_result"
    CALLBACK_QUERY = "callback_query"
    SHIPPING_QUERY = "shipping_query"
    PRE_CHECKOUT_QUERY = "pre_checkout_query"
    POLL = "poll"
    POLL_ANSWER = "poll_answer"
    MY_CHAT_MEMBER = "my_chat_member"
    CHAT_MEMBER = "chat_member"
    CHAT_JOIN_REQUEST = "chat_join_request"
    UNKNOWN = "unknown"


MESSAGE_KINDS = frozenset(
    {
        UpdateKind.MESSAGE,
        UpdateKind.EDITED_MESSAGE,
        UpdateKind.CHANNEL_POST,
        UpdateKind.EDITED_CHANNEL_POST,
    }
)

Payload = Union[
    Message,
    InlineQuery,
    ChosenInlineResult,
    CallbackQuery,
    ShippingQuery,
    PreCheckoutQuery,
    Poll,
    PollAnswer,
    ChatMemberUpdated,
    ChatJoinRequest,
    None,
]

# Lookup order when an envelope carries more than one payload.
_KIND_ORDER = tuple(kind for kind in UpdateKind if kind is not UpdateKind.UNKNOWN)


def classify(update: Update) -> tuple[UpdateKind, Payload]:
    for kind in _KIND_ORDER:
        payload = getattr(update, kind.value)
        if payload is not None:
            return kind, payload
    return UpdateKind.UNKNOWN, None


@dataclass(slots=True)
class UpdateContext:
    """Execution context shared by middleware, predicates and the handler."""

    client: BotClient | None
    cancel_scope: anyio.CancelScope | None = None
    values: dict[Any, Any] = field(default_factory=dict)
    error_sink: ErrorSink | None = None
    update: Update | None = None
    webhook_reply: bool = False
    reply: dict[str, Any] | None = None

    @property
    def deadline(self) -> float:
        if self.cancel_scope is None:
            return math.inf
        return self.cancel_scope.deadline

    @property
    def cancelled(self) -> bool:
        return self.cancel_scope is not None and self.cancel_scope.cancel_called

    def cancel(self) -> None:
        if self.cancel_scope is not None:
            self.cancel_scope.cancel()

    async def report(self, error: BaseException) -> None:
        await report_error(self.error_sink, error, self.update)


@dataclass(frozen=True, slots=True)
class TypedUpdate:
    kind: UpdateKind
    payload: Payload
    update: Update
    context: UpdateContext

    @classmethod
    def from_update(
        cls, update: Update, context: UpdateContext | None = None
    ) -> TypedUpdate:
        kind, payload = classify(update)
        if context is None:
            context = UpdateContext(client=None)
        if context.update is None:
            context.update = update
        return cls(kind=kind, payload=payload, update=update, context=context)

    @property
    def update_id(self) -> int:
        return self.update.update_id

    @property
    def client(self) -> BotClient | None:
        return self.context.client

    @property
    def message(self) -> Message | None:
        if self.kind in MESSAGE_KINDS:
            return self.payload  # type: ignore[return-value]
        return None

    @property
    def callback_query(self) -> CallbackQuery | None:
        if self.kind is UpdateKind.CALLBACK_QUERY:
            return self.payload  # type: ignore[return-value]
        return None

    @property
    def inline_query(self) -> InlineQuery | None:
        if self.kind is UpdateKind.INLINE_QUERY:
            return self.payload  # type: ignore[return-value]
        return None

    @property
    def chat(self) -> Chat | None:
        payload = self.payload
        if isinstance(payload, Message):
            return payload.chat
        if isinstance(payload, CallbackQuery):
            return payload.message.chat if payload.message is not None else None
        if isinstance(payload, (ChatMemberUpdated, ChatJoinRequest)):
            return payload.chat
        if isinstance(payload, PollAnswer):
            return payload.voter_chat
        return None

    @property
    def chat_type(self) -> str | None:
        chat = self.chat
        if chat is not None:
            return chat.type
        if isinstance(self.payload, InlineQuery):
            return self.payload.chat_type
        return None

    @property
    def sender(self) -> User | None:
        payload = self.payload
        if isinstance(payload, PollAnswer):
            return payload.user
        if isinstance(payload, Poll) or payload is None:
            return None
        return payload.from_

    @property
    def text(self) -> str | None:
        """Raw text carried by the update, or None when the variant has none."""
        payload = self.payload
        if isinstance(payload, Message):
            if payload.text is not None:
                return payload.text
            return payload.caption
        if isinstance(payload, CallbackQuery):
            return payload.data
        if isinstance(payload, (InlineQuery, ChosenInlineResult)):
            return payload.query
        if isinstance(payload, Poll):
            return payload.question
        return None

    async def answer(self, text: str, **kwargs: Any) -> dict[str, Any]:
        """Send a message to the chat this update came from."""
        chat = self.chat
        if chat is None:
            raise ValueError(f"{self.kind.value} update has no chat to answer")
        if self.client is None:
            raise RuntimeError("no client bound to this update")
        return await self.client.send_message(chat.id, text, **kwargs)

    async def reply(self, method: str, **params: Any) -> Any:
        """Call ``method`` through the webhook HTTP response when possible.

        Only the first reply of a webhook update travels in the response body,
        which is written once the handler returns; it carries no result, so
        None is returned. Later replies and polled updates call the Bot API.
        """
        context = self.context
        if context.webhook_reply and context.reply is None:
            context.reply = {"method": method, **params}
            return None
        if self.client is None:
            raise RuntimeError("no client bound to this update")
        return await self.client.call(method, params)

    async def answer_callback(
        self, text: str | None = None, *, show_alert: bool = False
    ) -> bool:
        query = self.callback_query
        if query is None:
            raise ValueError(f"{self.kind.value} update is not a callback query")
        if self.client is None:
            raise RuntimeError("no client bound to this update")
        return await self.client.answer_callback_query(
            query.id, text=text, show_alert=show_alert
        )
