"""Compact ``prefix:field:field`` encoding of inline button payloads."""

from __future__ import annotations

import string
import typing
from collections.abc import Callable
from typing import Any, Generic, TypeVar

import msgspec

from .filters import Filter
from .update import TypedUpdate

__all__ = [
    "CallbackData",
    "CallbackDataDecodeError",
    "CallbackDataTooLong",
]

CALLBACK_DATA_MAX_LEN = 64

T = TypeVar("T", bound=msgspec.Struct)

_DIGITS = string.digits + string.ascii_lowercase


class CallbackDataTooLong(ValueError):
    def __init__(self, length: int) -> None:
        super().__init__(
            f"callback data length is too long: {length}, max: {CALLBACK_DATA_MAX_LEN}"
        )
        self.length = length


class CallbackDataDecodeError(ValueError):
    pass


def _int_to_str(value: int, base: int) -> str:
    if base == 10:
        return str(value)
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    value = abs(value)
    digits: list[str] = []
    while value:
        value, rem = divmod(value, base)
        digits.append(_DIGITS[rem])
    return sign + "".join(reversed(digits))


def _unwrap_optional(tp: Any) -> tuple[Any, bool]:
    args = typing.get_args(tp)
    if args and type(None) in args:
        rest = [arg for arg in args if arg is not type(None)]
        if len(rest) == 1:
            return rest[0], True
    return tp, False


class CallbackData(Generic[T]):
    """Codec and filter factory for one kind of callback payload.

    Fields of ``type`` are written in declaration order. ``int`` fields use
    ``int_base`` (36 by default), ``bool`` is ``1``/``0``, ``None`` is empty.
    """

    def __init__(
        self,
        prefix: str,
        type: type[T],
        *,
        delimiter: str = ":",
        int_base: int = 36,
        check_length: bool = True,
    ) -> None:
        if not prefix or delimiter in prefix:
            raise ValueError(f"invalid callback data prefix {prefix!r}")
        self.prefix = prefix
        self.type = type
        self.delimiter = delimiter
        self.int_base = int_base
        self.check_length = check_length
        hints = typing.get_type_hints(type)
        self._fields = [(name, hints[name]) for name in type.__struct_fields__]

    def _encode_value(self, name: str, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, int):
            return _int_to_str(value, self.int_base)
        if isinstance(value, float):
            return repr(value)
        text = str(value)
        if self.delimiter in text:
            raise ValueError(
                f"field {name!r} contains the delimiter {self.delimiter!r}: {text!r}"
            )
        return text

    def _decode_value(self, name: str, tp: Any, raw: str) -> Any:
        tp, optional = _unwrap_optional(tp)
        if raw == "" and optional:
            return None
        try:
            if tp is bool:
                if raw not in ("0", "1"):
                    raise ValueError(f"invalid bool {raw!r}")
                return raw == "1"
            if tp is int:
                return int(raw, self.int_base)
            if tp is float:
                return float(raw)
            if tp is str:
                return raw
            return msgspec.convert(raw, type=tp, strict=False)
        except (ValueError, msgspec.ValidationError) as exc:
            raise CallbackDataDecodeError(f"field {name!r}: {exc}") from exc

    def encode(self, value: T) -> str:
        parts = [self.prefix]
        parts.extend(
            self._encode_value(name, getattr(value, name)) for name, _ in self._fields
        )
        data = self.delimiter.join(parts)
        if self.check_length and len(data.encode("utf-8")) > CALLBACK_DATA_MAX_LEN:
            raise CallbackDataTooLong(len(data.encode("utf-8")))
        return data

    def decode(self, data: str) -> T:
        head = self.prefix + self.delimiter
        if data == self.prefix and not self._fields:
            return self.type()
        if not data.startswith(head):
            raise CallbackDataDecodeError(
                f"invalid prefix: expected {self.prefix!r}, got {data!r}"
            )
        raw_parts = data[len(head) :].split(self.delimiter)
        if len(raw_parts) != len(self._fields):
            raise CallbackDataDecodeError(
                f"expected {len(self._fields)} fields, got {len(raw_parts)}"
            )
        values = {
            name: self._decode_value(name, tp, raw)
            for (name, tp), raw in zip(self._fields, raw_parts, strict=True)
        }
        try:
            return self.type(**values)
        except (TypeError, msgspec.ValidationError) as exc:
            raise CallbackDataDecodeError(str(exc)) from exc

    def button(self, text: str, value: T) -> dict[str, str]:
        return {"text": text, "callback_data": self.encode(value)}

    def parse(self, update: TypedUpdate) -> T | None:
        """Decoded payload of a callback query update, or None when it does not fit."""
        query = update.callback_query
        if query is None or query.data is None:
            return None
        try:
            return self.decode(query.data)
        except CallbackDataDecodeError:
            return None

    def filter(self, check: Callable[[T], bool] | None = None) -> Filter:
        return _CallbackDataFilter(self, check)


class _CallbackDataFilter(Filter):
    __slots__ = ("codec", "check")

    def __init__(
        self, codec: CallbackData[Any], check: Callable[[Any], bool] | None
    ) -> None:
        self.codec = codec
        self.check = check

    def evaluate(self, update: TypedUpdate) -> bool:
        value = self.codec.parse(update)
        if value is None:
            return False
        return self.check is None or bool(self.check(value))

    def __repr__(self) -> str:
        return f"CallbackData({self.codec.prefix!r}).filter()"
