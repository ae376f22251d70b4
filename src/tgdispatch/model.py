"""Bot API update payloads decoded with msgspec.

Only the fields the dispatch core and its predicates read are declared;
unknown fields are ignored on decode.
"""

from __future__ import annotations

from typing import Any

import msgspec

from .errors import UpdateDecodeError

__all__ = [
    "CallbackQuery",
    "Chat",
    "ChatJoinRequest",
    "ChatMemberUpdated",
    "ChosenInlineResult",
    "InlineQuery",
    "Message",
    "MessageReply",
    "Poll",
    "PollAnswer",
    "PreCheckoutQuery",
    "ShippingQuery",
    "Update",
    "User",
    "WebhookInfo",
    "decode_update",
]


class _Base(msgspec.Struct, frozen=True, forbid_unknown_fields=False):
    pass


class User(_Base):
    id: int
    is_bot: bool = False
    first_name: str = ""
    last_name: str | None = None
    username: str | None = None
    language_code: str | None = None


class Chat(_Base):
    id: int
    type: str
    title: str | None = None
    username: str | None = None
    is_forum: bool | None = None


class MessageReply(_Base):
    message_id: int
    text: str | None = None
    from_: User | None = msgspec.field(default=None, name="from")


class Message(_Base):
    message_id: int
    chat: Chat
    date: int = 0
    from_: User | None = msgspec.field(default=None, name="from")
    sender_chat: Chat | None = None
    message_thread_id: int | None = None
    text: str | None = None
    caption: str | None = None
    reply_to_message: MessageReply | None = None
    media_group_id: str | None = None
    photo: list[dict[str, Any]] | None = None
    document: dict[str, Any] | None = None
    voice: dict[str, Any] | None = None
    video: dict[str, Any] | None = None
    sticker: dict[str, Any] | None = None
    location: dict[str, Any] | None = None
    contact: dict[str, Any] | None = None
    poll: Poll | None = None
    via_bot: User | None = None


class CallbackQuery(_Base):
    id: str
    from_: User = msgspec.field(name="from")
    chat_instance: str = ""
    message: Message | None = None
    inline_message_id: str | None = None
    data: str | None = None
    game_short_name: str | None = None


class InlineQuery(_Base):
    id: str
    from_: User = msgspec.field(name="from")
    query: str = ""
    offset: str = ""
    chat_type: str | None = None


class ChosenInlineResult(_Base):
    result_id: str
    from_: User = msgspec.field(name="from")
    query: str = ""
    inline_message_id: str | None = None


class ShippingQuery(_Base):
    id: str
    from_: User = msgspec.field(name="from")
    invoice_payload: str = ""
    shipping_address: dict[str, Any] | None = None


class PreCheckoutQuery(_Base):
    id: str
    from_: User = msgspec.field(name="from")
    currency: str = ""
    total_amount: int = 0
    invoice_payload: str = ""


class PollOption(_Base):
    text: str
    voter_count: int = 0


class Poll(_Base):
    id: str
    question: str
    options: list[PollOption] = msgspec.field(default_factory=list)
    is_closed: bool = False
    type: str = "regular"


class PollAnswer(_Base):
    poll_id: str
    option_ids: list[int] = msgspec.field(default_factory=list)
    user: User | None = None
    voter_chat: Chat | None = None


class ChatMember(_Base):
    status: str
    user: User


class ChatMemberUpdated(_Base):
    chat: Chat
    from_: User = msgspec.field(name="from")
    date: int = 0
    old_chat_member: ChatMember | None = None
    new_chat_member: ChatMember | None = None


class ChatJoinRequest(_Base):
    chat: Chat
    from_: User = msgspec.field(name="from")
    user_chat_id: int = 0
    date: int = 0
    bio: str | None = None


class Update(_Base):
    update_id: int
    message: Message | None = None
    edited_message: Message | None = None
    channel_post: Message | None = None
    edited_channel_post: Message | None = None
    inline_query: InlineQuery | None = None
    chosen_inline_result: ChosenInlineResult | None = None
    callback_query: CallbackQuery | None = None
    shipping_query: ShippingQuery | None = None
    pre_checkout_query: PreCheckoutQuery | None = None
    poll: Poll | None = None
    poll_answer: PollAnswer | None = None
    my_chat_member: ChatMemberUpdated | None = None
    chat_member: ChatMemberUpdated | None = None
    chat_join_request: ChatJoinRequest | None = None


class WebhookInfo(_Base):
    url: str = ""
    has_custom_certificate: bool = False
    pending_update_count: int = 0
    ip_address: str | None = None
    max_connections: int | None = None
    allowed_updates: list[str] | None = None
    last_error_message: str | None = None


_json_decoder = msgspec.json.Decoder(Update)


def decode_update(data: bytes | str | dict[str, Any] | Update) -> Update:
    """Decode one update from a JSON body or an already parsed mapping."""
    if isinstance(data, Update):
        return data
    try:
        if isinstance(data, dict):
            return msgspec.convert(data, type=Update)
        return _json_decoder.decode(data)
    except (msgspec.DecodeError, msgspec.ValidationError) as exc:
        raise UpdateDecodeError(str(exc), raw=data) from exc
