"""Update ingestion and first-match dispatch for Telegram bots."""

from __future__ import annotations

__version__ = "0.1.0"

from .callback_data import CallbackData
from .client import BotClient, TelegramClient
from .dispatcher import Dispatcher, Failed
from .model import Update, decode_update
from .polling import Backoff, Poller, PollerState
from .router import UNMATCHED, Handled, Router
from .update import TypedUpdate, UpdateContext, UpdateKind
from .webhook import WebhookErrorPolicy, WebhookServer

__all__ = [
    "UNMATCHED",
    "Backoff",
    "BotClient",
    "CallbackData",
    "Dispatcher",
    "Failed",
    "Handled",
    "Poller",
    "PollerState",
    "Router",
    "TelegramClient",
    "TypedUpdate",
    "Update",
    "UpdateContext",
    "UpdateKind",
    "WebhookErrorPolicy",
    "WebhookServer",
    "__version__",
    "decode_update",
]
