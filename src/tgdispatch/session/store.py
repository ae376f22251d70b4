from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

import anyio

__all__ = ["FileStore", "MemoryStore", "SessionStore"]


@runtime_checkable
class SessionStore(Protocol):
    """Byte-oriented persistence consumed by :class:`SessionManager`.

    ``get`` returns None when nothing is stored for ``key``. Implementations
    are responsible for read-your-writes consistency per key.
    """

    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemoryStore:
    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    async def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data


def _default_transform(key: str) -> Sequence[str]:
    return [key]


class FileStore:
    """One ``<key>.session`` file per key under ``root``."""

    def __init__(
        self,
        root: str | Path,
        *,
        transform: Callable[[str], Sequence[str]] = _default_transform,
        mode: int = 0o600,
    ) -> None:
        self.root = Path(root).expanduser()
        self._transform = transform
        self._mode = mode

    def path_for(self, key: str) -> Path:
        parts = list(self._transform(key))
        if not parts:
            raise ValueError(f"session key {key!r} maps to an empty path")
        for part in parts:
            if not part or part in (".", "..") or "/" in part or "\\" in part:
                raise ValueError(f"invalid session path component {part!r}")
        path = self.root.joinpath(*parts)
        return path.with_name(path.name + ".session")

    async def get(self, key: str) -> bytes | None:
        path = anyio.Path(self.path_for(key))
        try:
            return await path.read_bytes()
        except FileNotFoundError:
            return None

    async def set(self, key: str, value: bytes) -> None:
        path = anyio.Path(self.path_for(key))
        await path.parent.mkdir(parents=True, exist_ok=True)
        # one tmp file per write; concurrent writers of a key must not share it
        tmp = path.with_name(f"{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            await tmp.write_bytes(value)
            await tmp.chmod(self._mode)
            await tmp.replace(path)
        except BaseException:
            with anyio.CancelScope(shield=True):
                await tmp.unlink(missing_ok=True)
            raise

    async def delete(self, key: str) -> None:
        path = anyio.Path(self.path_for(key))
        await path.unlink(missing_ok=True)
