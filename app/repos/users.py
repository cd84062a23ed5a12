from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from ..models import User
from ..services.errors import DuplicateEmail, StoreUnavailable

log = logging.getLogger("app.repos.users")


async def get_by_email(db: AsyncSession, email: str) -> Optional[User]:
    res = await db.execute(select(User).where(User.email == email))
    return res.scalar_one_or_none()


async def insert_user(
    db: AsyncSession,
    *,
    first_name: str,
    last_name: str,
    email: str,
    password_hash: str,
) -> User:
    user = User(first_name=first_name, last_name=last_name, email=email, password_hash=password_hash)
    db.add(user)
    await db.flush()
    return user


async def set_password_hash(db: AsyncSession, *, email: str, password_hash: str) -> bool:
    res = await db.execute(
        update(User).where(User.email == email).values(password_hash=password_hash)
    )
    return res.rowcount > 0


@dataclass(frozen=True)
class UserRecord:
    """Detached copy of a users row, held only for the length of a request."""
    id: int
    first_name: str
    last_name: str
    email: str
    password_hash: str

    @classmethod
    def from_model(cls, u: User) -> "UserRecord":
        return cls(
            id=u.id,
            first_name=u.first_name,
            last_name=u.last_name,
            email=u.email,
            password_hash=u.password_hash,
        )


class UserStore:
    """Credential store used by the auth flows; one short session per call.

    Database errors leave this class as ``StoreUnavailable`` (or ``DuplicateEmail``
    when the unique email constraint rejects an insert).
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def lookup_by_email(self, email: str) -> Optional[UserRecord]:
        try:
            async with self._session_factory() as db:
                user = await get_by_email(db, email)
        except SQLAlchemyError as exc:
            log.exception("user lookup failed")
            raise StoreUnavailable() from exc
        return UserRecord.from_model(user) if user else None

    async def insert(self, *, first_name: str, last_name: str, email: str, password_hash: str) -> UserRecord:
        try:
            async with self._session_factory() as db:
                user = await insert_user(
                    db, first_name=first_name, last_name=last_name, email=email, password_hash=password_hash
                )
                await db.commit()
                return UserRecord.from_model(user)
        except IntegrityError as exc:
            # lost the race with a concurrent signup for the same email
            log.info("insert rejected by unique email constraint", extra={"extra": f"email={email}"})
            raise DuplicateEmail() from exc
        except SQLAlchemyError as exc:
            log.exception("user insert failed")
            raise StoreUnavailable() from exc

    async def update_password_hash(self, email: str, password_hash: str) -> bool:
        try:
            async with self._session_factory() as db:
                updated = await set_password_hash(db, email=email, password_hash=password_hash)
                await db.commit()
        except SQLAlchemyError as exc:
            log.exception("password update failed")
            raise StoreUnavailable() from exc
        return updated
