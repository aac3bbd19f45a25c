"""Key/value persistence for index snapshots and search history."""

from __future__ import annotations

from abc import ABC, abstractmethod
import hashlib
import logging
from pathlib import Path
import re
import shutil
from typing import Any

import anyio
import orjson


logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]{1,100}$")


class AbstractKeyValueStore(ABC):
    """Async key/value store holding JSON-compatible values."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the stored value, or None when the key is absent."""
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    async def remove(self, key: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def clear(self) -> None:
        raise NotImplementedError


class InMemoryKeyValueStore(AbstractKeyValueStore):
    """Process-local store; values are round-tripped through JSON like the file store."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    async def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return None if raw is None else orjson.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = orjson.dumps(value)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileKeyValueStore(AbstractKeyValueStore):
    """One JSON file per key under ``root``; writes go through a temp file and a move."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    async def get(self, key: str) -> Any | None:
        path = self._key_path(key)
        try:
            async with await anyio.open_file(path, "rb") as fp:
                content = await fp.read()
        except FileNotFoundError:
            return None
        try:
            return orjson.loads(content)
        except orjson.JSONDecodeError as err:
            logger.warning("Ignoring corrupt store entry %s: %s", path, err)
            return None

    async def set(self, key: str, value: Any) -> None:
        path = self._key_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        async with await anyio.open_file(tmp_path, "wb") as fp:
            await fp.write(orjson.dumps(value))
        await anyio.to_thread.run_sync(shutil.move, str(tmp_path), str(path))

    async def remove(self, key: str) -> None:
        path = anyio.Path(self._key_path(key))
        await path.unlink(missing_ok=True)

    async def clear(self) -> None:
        if not self.root.exists():
            return
        for path in self.root.glob("*.json"):
            await anyio.Path(path).unlink(missing_ok=True)

    def _key_path(self, key: str) -> Path:
        name = key if _SAFE_KEY.match(key) else hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.root / f"{name}.json"
