"""Pending password-reset codes, keyed by normalized email.

Two backends share one shape:

* ``MemoryOtpRegistry``: a dict inside this process. A restart silently drops
  every pending reset, and it is only correct with a single worker process.
* ``RedisOtpRegistry``: ``otp:{email}`` keys with a native TTL, safe across
  workers.

Single operations are atomic on both. Multi-step sequences (issue + notify,
verify + update + delete) must run inside ``async with registry.locked(email)``.
"""
from __future__ import annotations
import asyncio
import logging
import secrets
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional, Protocol

from redis import asyncio as aioredis
from redis.exceptions import LockError, RedisError

from .errors import StoreUnavailable

log = logging.getLogger("app.otp")


def generate_code() -> str:
    # uniform over 100000..999999, never a leading zero
    return str(100000 + secrets.randbelow(900000))


@dataclass(frozen=True)
class OtpEntry:
    code: str
    expires_at: Optional[float] = None  # monotonic seconds; None = no expiry


class OtpRegistry(Protocol):
    def locked(self, email: str): ...
    async def put(self, email: str, code: str) -> Optional[OtpEntry]: ...
    async def get(self, email: str) -> Optional[str]: ...
    async def delete(self, email: str) -> None: ...
    async def take(self, email: str) -> Optional[OtpEntry]: ...
    async def restore(self, email: str, previous: Optional[OtpEntry]) -> None: ...


class MemoryOtpRegistry:
    def __init__(self, ttl_seconds: int = 0, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, OtpEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def locked(self, email: str) -> AsyncIterator[None]:
        lock = self._locks.get(email)
        if lock is None:
            lock = self._locks[email] = asyncio.Lock()
        self._lock_users[email] = self._lock_users.get(email, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[email] -= 1
            if not self._lock_users[email]:
                del self._lock_users[email]
                del self._locks[email]

    def _live(self, email: str) -> Optional[OtpEntry]:
        entry = self._entries.get(email)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._entries[email]
            return None
        return entry

    async def put(self, email: str, code: str) -> Optional[OtpEntry]:
        """Store ``code`` for ``email``; returns the entry it replaced, if any."""
        previous = self._live(email)
        expires_at = self._clock() + self._ttl if self._ttl > 0 else None
        self._entries[email] = OtpEntry(code=code, expires_at=expires_at)
        return previous

    async def get(self, email: str) -> Optional[str]:
        entry = self._live(email)
        return entry.code if entry else None

    async def delete(self, email: str) -> None:
        self._entries.pop(email, None)

    async def take(self, email: str) -> Optional[OtpEntry]:
        """Remove and return the live entry, so it can be put back with ``restore``."""
        entry = self._live(email)
        self._entries.pop(email, None)
        return entry

    async def restore(self, email: str, previous: Optional[OtpEntry]) -> None:
        if previous is None:
            self._entries.pop(email, None)
        else:
            self._entries[email] = previous

    def __len__(self) -> int:
        return len(self._entries)


class RedisOtpRegistry:
    def __init__(
        self,
        redis: aioredis.Redis,
        ttl_seconds: int = 0,
        lock_timeout_sec: int = 30,
        prefix: str = "otp",
    ) -> None:
        self._redis = redis
        self._ttl = ttl_seconds
        self._lock_timeout = lock_timeout_sec
        self._prefix = prefix

    def _key(self, email: str) -> str:
        return f"{self._prefix}:{email}"

    @staticmethod
    def _entry(code: Optional[str], pttl: Optional[int]) -> Optional[OtpEntry]:
        if code is None:
            return None
        # pttl is -1 for keys without expiry
        expires_at = time.monotonic() + pttl / 1000 if pttl and pttl > 0 else None
        return OtpEntry(code=code, expires_at=expires_at)

    @asynccontextmanager
    async def locked(self, email: str) -> AsyncIterator[None]:
        lock = self._redis.lock(
            f"lock:{self._key(email)}",
            timeout=self._lock_timeout,
            blocking_timeout=self._lock_timeout,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as exc:
            log.exception("otp lock acquire failed")
            raise StoreUnavailable() from exc
        if not acquired:
            log.warning("otp lock busy", extra={"extra": f"email={email}"})
            raise StoreUnavailable()
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                log.warning("otp lock expired before release", extra={"extra": f"email={email}"})

    async def put(self, email: str, code: str) -> Optional[OtpEntry]:
        key = self._key(email)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.get(key)
                pipe.pttl(key)
                # set new code with TTL; overwrite any previous
                pipe.set(key, code, ex=self._ttl if self._ttl > 0 else None)
                prev_code, prev_pttl, _ = await pipe.execute()
        except RedisError as exc:
            log.exception("otp put failed")
            raise StoreUnavailable() from exc
        return self._entry(prev_code, prev_pttl)

    async def get(self, email: str) -> Optional[str]:
        try:
            return await self._redis.get(self._key(email))
        except RedisError as exc:
            log.exception("otp get failed")
            raise StoreUnavailable() from exc

    async def delete(self, email: str) -> None:
        try:
            await self._redis.delete(self._key(email))
        except RedisError as exc:
            log.exception("otp delete failed")
            raise StoreUnavailable() from exc

    async def take(self, email: str) -> Optional[OtpEntry]:
        key = self._key(email)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.get(key)
                pipe.pttl(key)
                pipe.delete(key)
                code, pttl, _ = await pipe.execute()
        except RedisError as exc:
            log.exception("otp take failed")
            raise StoreUnavailable() from exc
        return self._entry(code, pttl)

    async def restore(self, email: str, previous: Optional[OtpEntry]) -> None:
        key = self._key(email)
        remaining_ms = None
        if previous is not None and previous.expires_at is not None:
            remaining_ms = int((previous.expires_at - time.monotonic()) * 1000)
        try:
            if previous is None or (remaining_ms is not None and remaining_ms <= 0):
                await self._redis.delete(key)
            else:
                await self._redis.set(key, previous.code, px=remaining_ms)
        except RedisError as exc:
            log.exception("otp restore failed")
            raise StoreUnavailable() from exc
