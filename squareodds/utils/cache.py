"""
Caches owned by a service instance.

- AsyncMemoCache: keyed async memoization with in-flight de-duplication.
  Concurrent callers for the same key await one shared task; failures are
  evicted so the next call retries.
- ModelCache: pre-game model store, in memory plus one JSON file per key
  carrying an absolute expiry timestamp.
"""

import asyncio
import re
import time
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, Awaitable, Callable, Hashable, Optional

import orjson
import structlog
from pydantic import ValidationError

from squareodds.models.schemas import CachedDigitModel

logger = structlog.get_logger()


@dataclass
class _MemoEntry:
    task: Optional[asyncio.Task] = None
    value: Any = None
    expires_at: float = float("inf")

    @property
    def settled(self) -> bool:
        return self.task is None


class AsyncMemoCache:
    """
    Async read-through cache.

    Args:
        ttl_seconds: Lifetime of a settled value. None keeps values forever,
            0 keeps nothing once settled (in-flight de-duplication only).
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[Hashable, _MemoEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_load(self, key: Hashable, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value for key, running loader at most once concurrently."""
        entry = self._entries.get(key)
        if entry is not None:
            if not entry.settled:
                return await asyncio.shield(entry.task)
            if entry.expires_at > self._clock():
                return entry.value
            del self._entries[key]

        task = asyncio.ensure_future(loader())
        self._entries[key] = _MemoEntry(task=task)
        task.add_done_callback(partial(self._settle, key))
        return await asyncio.shield(task)

    def _settle(self, key: Hashable, task: asyncio.Task) -> None:
        entry = self._entries.get(key)
        if entry is None or entry.task is not task:
            return

        if task.cancelled() or task.exception() is not None:
            del self._entries[key]
            return

        if self.ttl_seconds is not None and self.ttl_seconds <= 0:
            del self._entries[key]
            return

        expires_at = float("inf") if self.ttl_seconds is None else self._clock() + self.ttl_seconds
        self._entries[key] = _MemoEntry(value=task.result(), expires_at=expires_at)


_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]+")


class ModelCache:
    """
    TTL store for pre-game models.

    Entries are never mutated; they expire. The persistent layer is best
    effort: unreadable or expired files are deleted and treated as misses,
    and write failures are logged but never raised.
    """

    def __init__(
        self,
        ttl_seconds: float,
        cache_dir: Optional[Path] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self._clock = clock
        self._memory: dict[str, tuple[float, CachedDigitModel]] = {}
        self.logger = logger.bind(component="model_cache")

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _path_for(self, key: str) -> Optional[Path]:
        if self.cache_dir is None:
            return None
        return self.cache_dir / f"{_UNSAFE_FILENAME.sub('_', key)}.json"

    def get(self, key: str) -> Optional[CachedDigitModel]:
        """Read-through lookup: memory first, then the persistent file."""
        now_ms = self._now_ms()
        in_memory = self._memory.get(key)
        if in_memory is not None:
            expires_at_ms, value = in_memory
            if expires_at_ms > now_ms:
                return value
            del self._memory[key]

        path = self._path_for(key)
        if path is None or not path.exists():
            return None

        try:
            payload = orjson.loads(path.read_bytes())
            expires_at_ms = int(payload["expires_at"])
            if expires_at_ms <= now_ms:
                self.logger.debug("Evicting expired cache entry", key=key)
                self._remove_file(path)
                return None
            value = CachedDigitModel.model_validate(payload["value"])
        except (orjson.JSONDecodeError, ValidationError, KeyError, TypeError, ValueError) as e:
            self.logger.warning("Evicting corrupt cache entry", key=key, error=str(e))
            self._remove_file(path)
            return None
        except OSError as e:
            self.logger.warning("Cache read failed", key=key, error=str(e))
            return None

        self._memory[key] = (expires_at_ms, value)
        return value

    def set(self, key: str, value: CachedDigitModel) -> None:
        expires_at_ms = self._now_ms() + int(self.ttl_seconds * 1000)
        self._memory[key] = (expires_at_ms, value)

        path = self._path_for(key)
        if path is None:
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(orjson.dumps({
                "expires_at": expires_at_ms,
                "value": value.model_dump(mode="json"),
            }))
        except OSError as e:
            self.logger.warning("Cache write failed", key=key, error=str(e))

    def _remove_file(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            self.logger.warning("Cache eviction failed", path=str(path), error=str(e))
