"""
Storage contract and the cache entry model.
"""

import asyncio
import base64
import json
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, TypeVar, TYPE_CHECKING

from shared.errors import StorageConnectionError, StorageError, StorageTimeout
from shared.logging import get_logger
from ..caching.body import decode_text, is_textual

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry:
    """One stored response."""

    status: int
    headers: Optional[Dict[str, str]]
    body: bytes
    created_at: float = field(default_factory=time.time)
    ttl_ms: Optional[int] = None
    stale: bool = False

    @property
    def size_bytes(self) -> int:
        header_bytes = sum(len(k) + len(v) for k, v in (self.headers or {}).items())
        return len(self.body) + header_bytes

    @property
    def expires_at(self) -> Optional[float]:
        if self.ttl_ms is None:
            return None
        return self.created_at + self.ttl_ms / 1000

    def is_expired(self, now: Optional[float] = None) -> bool:
        expires_at = self.expires_at
        if expires_at is None:
            return False
        return (now if now is not None else time.time()) >= expires_at

    def with_ttl(self, ttl_ms: Optional[int], now: Optional[float] = None) -> "CacheEntry":
        return replace(self, ttl_ms=ttl_ms, created_at=now if now is not None else time.time(), stale=False)

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in (self.headers or {}).items():
            if key.lower() == lowered:
                return value
        return None

    def to_json(self) -> str:
        """Serialize for remote storage.

        Textual bodies are stored decoded; anything else (or text that does
        not survive a UTF-8 round trip) is base64 encoded.
        """
        payload: Dict[str, Any] = {
            "status": self.status,
            "headers": self.headers,
            "created_at": self.created_at,
            "ttl_ms": self.ttl_ms,
        }
        text = decode_text(self.body) if is_textual(self.header("content-type")) else None
        if text is not None and text.encode("utf-8") == self.body:
            payload["text"] = text
        else:
            payload["body_b64"] = base64.b64encode(self.body).decode("ascii")
        return json.dumps(payload)

    @classmethod
    def from_json(cls, raw: Any) -> "CacheEntry":
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
        if "text" in data:
            body = data["text"].encode("utf-8")
        else:
            body = base64.b64decode(data.get("body_b64", ""))
        return cls(
            status=int(data["status"]),
            headers=data.get("headers"),
            body=body,
            created_at=float(data.get("created_at") or time.time()),
            ttl_ms=data.get("ttl_ms"),
        )


class CacheProvider(ABC):
    """Storage contract shared by all backends.

    Public operations never raise. Timeouts and connection failures are
    logged and degrade to a miss for reads and a no-op for writes.
    """

    name = "abstract"
    reconnect_interval = 5.0

    def __init__(
        self,
        *,
        default_ttl_ms: Optional[int] = None,
        get_timeout: float = 1.0,
        set_timeout: float = 1.0,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.default_ttl_ms = default_ttl_ms
        self.get_timeout = get_timeout
        self.set_timeout = set_timeout
        self.metrics = metrics
        self.logger = get_logger(f"cache.storage.{self.name}")
        self._initialized = False
        self._ready = False
        self._last_connect_attempt = 0.0

    @property
    def ready(self) -> bool:
        return self._ready

    async def init(self) -> None:
        """Establish connection/state. Safe to call more than once."""
        if self._initialized:
            return
        self._initialized = True
        self._last_connect_attempt = time.monotonic()
        try:
            await self._timed("init", self._connect(), self.set_timeout)
            self._set_ready(True)
            self.logger.info("Cache storage initialized", provider=self.name)
        except Exception as exc:
            self._set_ready(False)
            self._record_failure("init", self._translate_error("init", exc))

    async def get(self, key: str) -> Optional[CacheEntry]:
        """Stored entry for ``key`` or None on miss."""
        return await self._run("get", lambda: self._get(key), self.get_timeout, None)

    async def set(self, key: str, entry: CacheEntry, ttl_ms: Optional[int] = None) -> bool:
        """Store ``entry`` under ``key``, replacing any previous entry."""
        ttl = ttl_ms if ttl_ms is not None else self.default_ttl_ms
        stamped = entry.with_ttl(ttl)
        return await self._run("set", lambda: self._set(key, stamped), self.set_timeout, False)

    async def delete(self, key: str) -> bool:
        """Remove ``key``; absent keys are a no-op."""
        return await self._run("delete", lambda: self._delete(key), self.set_timeout, False)

    async def clear_by_regexp(self, patterns: Sequence["re.Pattern[str]"]) -> int:
        """Remove every entry whose key matches any pattern. Returns the count removed."""
        if not patterns:
            return 0
        compiled = [re.compile(p) if isinstance(p, str) else p for p in patterns]
        return await self._run("clear_by_regexp", lambda: self._clear_by_regexp(compiled), None, 0)

    async def reset(self) -> bool:
        """Remove all entries."""
        return await self._run("reset", self._reset, None, False)

    async def close(self) -> None:
        try:
            await self._close()
        except Exception as exc:
            self.logger.warning("Error closing cache storage", provider=self.name, error=str(exc))
        finally:
            self._initialized = False
            self._set_ready(False)

    async def health_check(self) -> bool:
        try:
            await self._timed("ping", self._ping(), self.get_timeout)
            return True
        except Exception:
            return False

    async def _run(
        self,
        operation: str,
        call: Callable[[], Awaitable[T]],
        timeout: Optional[float],
        default: T,
    ) -> T:
        if not self._ready and not await self._ensure_ready(operation):
            return default
        try:
            if timeout is None:
                return await call()
            return await self._timed(operation, call(), timeout)
        except Exception as exc:
            error = self._translate_error(operation, exc)
            if isinstance(error, StorageConnectionError):
                self._set_ready(False)
            self._record_failure(operation, error)
            return default

    async def _timed(self, operation: str, awaitable: Awaitable[T], timeout: float) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError as exc:
            raise StorageTimeout(operation, round(timeout * 1000)) from exc

    async def _ensure_ready(self, operation: str) -> bool:
        """Try to (re)connect, at most once per ``reconnect_interval``."""
        now = time.monotonic()
        if self._initialized and now - self._last_connect_attempt < self.reconnect_interval:
            return False
        self._initialized = True
        self._last_connect_attempt = now
        try:
            await self._timed("connect", self._connect(), self.set_timeout)
        except Exception as exc:
            self._record_failure(operation, self._translate_error(operation, exc))
            return False
        self._set_ready(True)
        self.logger.info("Cache storage ready", provider=self.name)
        return True

    def _set_ready(self, ready: bool) -> None:
        self._ready = ready
        if self.metrics:
            self.metrics.set_gauge("cache_storage_ready", 1 if ready else 0)

    def _timeout_for(self, operation: str) -> float:
        return self.get_timeout if operation in ("get", "ping") else self.set_timeout

    def _translate_error(self, operation: str, exc: Exception) -> Exception:
        """Map backend-specific exceptions onto the storage taxonomy."""
        return exc

    def _record_failure(self, operation: str, error: Exception) -> None:
        if isinstance(error, StorageTimeout):
            kind = "timeout"
            self.logger.warning("Cache storage operation timed out", provider=self.name,
                                operation=operation, timeout_ms=error.timeout_ms)
        elif isinstance(error, StorageConnectionError):
            kind = "connection"
            self.logger.error("Cache storage connection error", provider=self.name,
                              operation=operation, error=error.message)
        elif isinstance(error, StorageError):
            kind = "storage"
            self.logger.error("Cache storage error", provider=self.name,
                              operation=operation, error=error.message)
        else:
            kind = type(error).__name__
            self.logger.error("Cache storage operation failed", provider=self.name,
                              operation=operation, error=str(error), exc_info=error)
        if self.metrics:
            self.metrics.increment_counter("cache_storage_errors_total", operation=operation, error=kind)

    async def _connect(self) -> None:
        """Backend-specific connection setup."""

    async def _ping(self) -> None:
        """Raise when the backend is unreachable."""

    async def _close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def _get(self, key: str) -> Optional[CacheEntry]:
        ...

    @abstractmethod
    async def _set(self, key: str, entry: CacheEntry) -> bool:
        ...

    @abstractmethod
    async def _delete(self, key: str) -> bool:
        ...

    @abstractmethod
    async def _clear_by_regexp(self, patterns: Sequence["re.Pattern[str]"]) -> int:
        ...

    @abstractmethod
    async def _reset(self) -> bool:
        ...
