from __future__ import annotations
import asyncio
from functools import partial

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from ..config import Settings


class PasswordHashing:
    """argon2id hashing, run off the event loop because each call is deliberately slow."""

    def __init__(self, *, time_cost: int, memory_cost: int, parallelism: int) -> None:
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
        )
        # verified against when the email is unknown, so both paths cost the same
        self._dummy_hash = self._hasher.hash("not-a-real-password")

    @classmethod
    def from_settings(cls, settings: Settings) -> "PasswordHashing":
        return cls(
            time_cost=settings.ARGON2_TIME_COST,
            memory_cost=settings.ARGON2_MEMORY_COST,
            parallelism=settings.ARGON2_PARALLELISM,
        )

    def _verify(self, hashed: str, plain: str) -> bool:
        try:
            return self._hasher.verify(hashed, plain)
        except (VerificationError, InvalidHashError):
            return False

    async def hash(self, plain: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._hasher.hash, plain)

    async def verify(self, hashed: str | None, plain: str) -> bool:
        loop = asyncio.get_running_loop()
        if hashed is None:
            await loop.run_in_executor(None, partial(self._verify, self._dummy_hash, plain))
            return False
        return await loop.run_in_executor(None, partial(self._verify, hashed, plain))
