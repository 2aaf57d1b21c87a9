"""
Referral storage tiers.

The capture pipeline persists attribution into two independent tiers so
either can satisfy a later read if the other is cleared:
- CookieTier: request cookies in, Set-Cookie writes out
- MemoryTier / RedisTier: durable per-visitor store
"""
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Protocol, Tuple
from urllib.parse import quote, unquote
import asyncio

from redis import Redis
from starlette.responses import Response


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyValueTier(Protocol):
    """Minimal browser-storage-like contract: string values with an expiry."""

    name: str

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, expires_at: datetime) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


class CookieTier:
    """
    Cookie tier bound to a single request/response cycle.

    Reads come from the incoming cookies (plus writes made earlier in the
    same request); writes are buffered and flushed with `apply(response)`.
    Values are URL-encoded so JSON payloads survive cookie quoting.
    """

    name = "cookie"

    def __init__(self, cookies: Optional[Dict[str, str]] = None, *, path: str = "/", samesite: str = "lax"):
        self._cookies: Dict[str, Optional[str]] = dict(cookies or {})
        self._pending: List[Tuple[str, Optional[str], Optional[datetime]]] = []
        self.path = path
        self.samesite = samesite

    async def get(self, key: str) -> Optional[str]:
        raw = self._cookies.get(key)
        return unquote(raw) if raw else None

    async def set(self, key: str, value: str, expires_at: datetime) -> None:
        encoded = quote(value, safe="")
        self._cookies[key] = encoded
        self._pending.append((key, encoded, expires_at))

    async def delete(self, key: str) -> None:
        self._cookies[key] = None
        self._pending.append((key, None, None))

    def apply(self, response: Response) -> None:
        for key, value, expires_at in self._pending:
            if value is None:
                response.delete_cookie(key, path=self.path)
            else:
                response.set_cookie(key, value, expires=expires_at, path=self.path, samesite=self.samesite)
        self._pending.clear()


class MemoryTier:
    """
    Durable tier kept in a process-local dict, scoped by namespace.

    For single-process deployments and tests; production uses RedisTier.
    Writes sweep expired entries of every namespace so abandoned visitors
    do not accumulate.
    """

    name = "durable"

    def __init__(
        self,
        namespace: str,
        data: Optional[Dict[str, Tuple[str, datetime]]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.namespace = namespace
        self._data = data if data is not None else {}
        self._clock = clock

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[str]:
        entry = self._data.get(self._key(key))
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            self._data.pop(self._key(key), None)
            return None
        return value

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._data.items() if expires_at <= now]
        for key in expired:
            self._data.pop(key, None)
        return len(expired)

    async def set(self, key: str, value: str, expires_at: datetime) -> None:
        self.sweep()
        self._data[self._key(key)] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(self._key(key), None)


class RedisTier:
    """Durable tier backed by Redis keys with absolute expiry."""

    name = "durable"

    def __init__(self, client: Redis, namespace: str, prefix: str = "sharewizard:referral"):
        self.client = client
        self.namespace = namespace
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[str]:
        value = await asyncio.to_thread(self.client.get, self._key(key))
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)

    async def set(self, key: str, value: str, expires_at: datetime) -> None:
        await asyncio.to_thread(self.client.set, self._key(key), value, exat=expires_at)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self.client.delete, self._key(key))
