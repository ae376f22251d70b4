"""Predicates evaluated by the router before a handler is chosen.

Every filter is a pure function of a :class:`TypedUpdate`. Filters that read a
field the update's variant does not carry return False instead of raising.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from .update import TypedUpdate, UpdateKind

__all__ = [
    "All",
    "Any",
    "ChatType",
    "Command",
    "Filter",
    "FilterFunc",
    "HasField",
    "KindIs",
    "Not",
    "Regexp",
    "TextContains",
    "TextEqual",
    "TextHasPrefix",
    "TextIn",
    "as_filter",
]


class Filter:
    def evaluate(self, update: TypedUpdate) -> bool:
        raise NotImplementedError

    def __call__(self, update: TypedUpdate) -> bool:
        return self.evaluate(update)

    def __and__(self, other: Filter | Callable[[TypedUpdate], bool]) -> Filter:
        return All(self, as_filter(other))

    def __or__(self, other: Filter | Callable[[TypedUpdate], bool]) -> Filter:
        return Any(self, as_filter(other))

    def __invert__(self) -> Filter:
        return Not(self)


@dataclass(frozen=True, slots=True)
class FilterFunc(Filter):
    func: Callable[[TypedUpdate], bool]

    def evaluate(self, update: TypedUpdate) -> bool:
        return bool(self.func(update))


def as_filter(value: Filter | Callable[[TypedUpdate], bool]) -> Filter:
    if isinstance(value, Filter):
        return value
    if callable(value):
        return FilterFunc(value)
    raise TypeError(f"expected a filter or callable, got {type(value).__name__}")


class All(Filter):
    __slots__ = ("filters",)

    def __init__(self, *filters: Filter | Callable[[TypedUpdate], bool]) -> None:
        self.filters = tuple(as_filter(item) for item in filters)

    def evaluate(self, update: TypedUpdate) -> bool:
        return all(item.evaluate(update) for item in self.filters)

    def __repr__(self) -> str:
        return f"All{self.filters!r}"


class Any(Filter):
    __slots__ = ("filters",)

    def __init__(self, *filters: Filter | Callable[[TypedUpdate], bool]) -> None:
        self.filters = tuple(as_filter(item) for item in filters)

    def evaluate(self, update: TypedUpdate) -> bool:
        return any(item.evaluate(update) for item in self.filters)

    def __repr__(self) -> str:
        return f"Any{self.filters!r}"


class Not(Filter):
    __slots__ = ("filter",)

    def __init__(self, filter: Filter | Callable[[TypedUpdate], bool]) -> None:
        self.filter = as_filter(filter)

    def evaluate(self, update: TypedUpdate) -> bool:
        return not self.filter.evaluate(update)

    def __repr__(self) -> str:
        return f"Not({self.filter!r})"


def _normalize(text: str, *, ignore_case: bool) -> str:
    text = text.strip()
    return text.casefold() if ignore_case else text


def _update_text(update: TypedUpdate, *, caption: bool) -> str | None:
    message = update.message
    if message is not None and not caption:
        return message.text
    return update.text


class TextEqual(Filter):
    """Match when the whole normalized text equals one of ``values``."""

    __slots__ = ("values", "ignore_case", "caption")

    def __init__(
        self, *values: str, ignore_case: bool = False, caption: bool = True
    ) -> None:
        if not values:
            raise ValueError("TextEqual needs at least one value")
        self.ignore_case = ignore_case
        self.caption = caption
        self.values = frozenset(_normalize(v, ignore_case=ignore_case) for v in values)

    def evaluate(self, update: TypedUpdate) -> bool:
        text = _update_text(update, caption=self.caption)
        if text is None:
            return False
        return _normalize(text, ignore_case=self.ignore_case) in self.values


def TextIn(values: Iterable[str], *, ignore_case: bool = False) -> TextEqual:
    return TextEqual(*values, ignore_case=ignore_case)


@dataclass(frozen=True, slots=True)
class TextHasPrefix(Filter):
    prefix: str
    caption: bool = True

    def evaluate(self, update: TypedUpdate) -> bool:
        text = _update_text(update, caption=self.caption)
        return text is not None and text.startswith(self.prefix)


@dataclass(frozen=True, slots=True)
class TextContains(Filter):
    needle: str
    caption: bool = True

    def evaluate(self, update: TypedUpdate) -> bool:
        text = _update_text(update, caption=self.caption)
        return text is not None and self.needle in text


class Regexp(Filter):
    __slots__ = ("pattern",)

    def __init__(self, pattern: str | re.Pattern[str], flags: int = 0) -> None:
        self.pattern = re.compile(pattern, flags) if isinstance(pattern, str) else pattern

    def evaluate(self, update: TypedUpdate) -> bool:
        text = update.text
        if not text:
            return False
        return self.pattern.search(text) is not None

    def __repr__(self) -> str:
        return f"Regexp({self.pattern.pattern!r})"


class Command(Filter):
    """Match bot commands such as ``/start`` or ``/start@my_bot args``.

    Only message variants are inspected. When ``username`` is set, a command
    addressed to another bot (``/start@other_bot``) does not match.
    """

    __slots__ = ("commands", "prefixes", "ignore_case", "ignore_caption", "username")

    def __init__(
        self,
        command: str,
        *aliases: str,
        prefixes: str = "/",
        ignore_case: bool = True,
        ignore_caption: bool = True,
        username: str | None = None,
    ) -> None:
        names = (command, *aliases)
        self.ignore_case = ignore_case
        self.commands = frozenset(n.lower() if ignore_case else n for n in names)
        self.prefixes = prefixes
        self.ignore_caption = ignore_caption
        self.username = username.lstrip("@").lower() if username else None

    def evaluate(self, update: TypedUpdate) -> bool:
        message = update.message
        if message is None:
            return False
        text = message.text
        if not text and not self.ignore_caption:
            text = message.caption
        if not text:
            return False
        head = text.split(maxsplit=1)[0] if text.strip() else ""
        if not head or head[0] not in self.prefixes:
            return False
        name, _, mention = head[1:].partition("@")
        if self.ignore_case:
            name = name.lower()
        if mention and self.username is not None and mention.lower() != self.username:
            return False
        return name in self.commands

    @staticmethod
    def args(update: TypedUpdate) -> str:
        """Text after the command token, stripped."""
        message = update.message
        text = message.text if message is not None else None
        if not text:
            return ""
        parts = text.split(maxsplit=1)
        return parts[1].strip() if len(parts) > 1 else ""


class ChatType(Filter):
    __slots__ = ("types",)

    def __init__(self, *types: str) -> None:
        self.types = frozenset(types)

    def evaluate(self, update: TypedUpdate) -> bool:
        chat_type = update.chat_type
        return chat_type is not None and chat_type in self.types


class KindIs(Filter):
    __slots__ = ("kinds",)

    def __init__(self, *kinds: UpdateKind) -> None:
        self.kinds = frozenset(kinds)

    def evaluate(self, update: TypedUpdate) -> bool:
        return update.kind in self.kinds


class HasField(Filter):
    """Match messages carrying any of the given content fields (``photo``, ``voice``...)."""

    __slots__ = ("fields",)

    def __init__(self, *fields: str) -> None:
        self.fields = tuple(fields)

    def evaluate(self, update: TypedUpdate) -> bool:
        message = update.message
        if message is None:
            return False
        return any(getattr(message, name, None) is not None for name in self.fields)
