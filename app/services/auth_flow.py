# app/services/auth_flow.py
from __future__ import annotations
import asyncio
import functools
import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from ..auth.passwords import PasswordHashing
from ..domain.schemas.auth import UserOut
from ..observability.metrics import AUTH_FLOW, OTP_ISSUED, OTP_ROLLED_BACK
from ..repos.users import UserStore
from .errors import (
    AuthFlowError,
    DuplicateEmail,
    InvalidCredentials,
    InvalidOrExpiredCode,
    NotificationFailed,
    StoreUnavailable,
    UnknownEmail,
    ValidationError,
)
from .mailer import Notifier
from .otp_registry import OtpRegistry, generate_code

log = logging.getLogger("app.auth")


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


@dataclass(frozen=True)
class FlowResult:
    message: str
    user: Optional[UserOut] = None


def _observed(flow: str, failure_message: str):
    """Count outcomes and give dependency failures the flow's own safe message."""
    def deco(fn):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            try:
                result = await fn(*args, **kwargs)
            except StoreUnavailable as exc:
                AUTH_FLOW.labels(flow=flow, outcome="StoreUnavailable").inc()
                raise StoreUnavailable(failure_message) from exc
            except AuthFlowError as exc:
                AUTH_FLOW.labels(flow=flow, outcome=type(exc).__name__).inc()
                raise
            AUTH_FLOW.labels(flow=flow, outcome="ok").inc()
            return result
        return wrapper
    return deco


class AuthFlow:
    """Registration, login and the OTP password-reset flow.

    Collaborators are injected so tests can swap in fakes:

    - ``store``: persistent users (``UserStore``)
    - ``otps``: pending reset codes (``MemoryOtpRegistry`` / ``RedisOtpRegistry``)
    - ``notifier``: anything with ``send_message(to=, subject=, body=) -> bool``
    - ``passwords``: argon2 hashing

    Plaintext passwords and reset codes never reach the log.
    """

    def __init__(
        self,
        *,
        store: UserStore,
        otps: OtpRegistry,
        notifier: Notifier,
        passwords: PasswordHashing,
        min_password_length: int = 8,
        reset_subject: str = "Password Reset",
    ) -> None:
        self._store = store
        self._otps = otps
        self._notifier = notifier
        self._passwords = passwords
        self._min_len = min_password_length
        self._reset_subject = reset_subject

    def _check_length(self, password: str) -> None:
        if len(password) < self._min_len:
            raise ValidationError(f"Password must be at least {self._min_len} characters.")

    # ---------- signup ----------
    @_observed("signup", "Internal server error.")
    async def register(
        self,
        *,
        first_name: Optional[str],
        last_name: Optional[str],
        email: Optional[str],
        password: Optional[str],
        confirm_password: Optional[str],
    ) -> FlowResult:
        email = normalize_email(email)
        if any(_blank(v) for v in (first_name, last_name, email, password, confirm_password)):
            raise ValidationError("All fields are required.")
        if password != confirm_password:
            raise ValidationError("Passwords don't match.")
        self._check_length(password)

        # fast path only; the unique constraint on users.email decides races
        if await self._store.lookup_by_email(email) is not None:
            raise DuplicateEmail()

        password_hash = await self._passwords.hash(password)
        user = await self._store.insert(
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            email=email,
            password_hash=password_hash,
        )
        log.info("user registered", extra={"extra": f"user_id={user.id} email={email}"})
        return FlowResult(message="User registered successfully.")

    # ---------- login ----------
    @_observed("login", "Login failed.")
    async def authenticate(self, *, email: Optional[str], password: Optional[str]) -> FlowResult:
        email = normalize_email(email)
        if _blank(email) or _blank(password):
            raise ValidationError("Email and password are required.")

        user = await self._store.lookup_by_email(email)
        # unknown emails still pay for a verify so timing matches a wrong password
        ok = await self._passwords.verify(user.password_hash if user else None, password)
        if not user or not ok:
            raise InvalidCredentials()

        return FlowResult(message="Login successful", user=UserOut.from_record(user))

    # ---------- forgot-password ----------
    @_observed("forgot_password", "Error sending OTP.")
    async def issue_reset_code(self, *, email: Optional[str]) -> FlowResult:
        email = normalize_email(email)
        if not email:
            raise ValidationError("Email is required.")

        user = await self._store.lookup_by_email(email)
        if user is None:
            raise UnknownEmail()

        code = generate_code()
        async with self._otps.locked(email):
            previous = await self._otps.put(email, code)
            send = asyncio.ensure_future(
                self._notifier.send_message(
                    to=user.email,
                    subject=self._reset_subject,
                    body=f"Your reset code is: {code}",
                )
            )
            try:
                sent = await asyncio.shield(send)
            except asyncio.CancelledError:
                # a started send cannot be recalled: keep the code only if the mail went out
                if not await self._settle(send, email):
                    await self._otps.restore(email, previous)
                raise
            except Exception:
                log.exception("reset code delivery raised", extra={"extra": f"email={email}"})
                sent = False

            if not sent:
                await self._otps.restore(email, previous)
                OTP_ROLLED_BACK.inc()
                raise NotificationFailed()

        OTP_ISSUED.inc()
        log.info("reset code sent", extra={"extra": f"email={email}"})
        return FlowResult(message="OTP sent to email.")

    @staticmethod
    async def _settle(send: "asyncio.Future[bool]", email: str) -> bool:
        try:
            return await send
        except Exception:
            log.exception("reset code delivery raised", extra={"extra": f"email={email}"})
            return False

    # ---------- reset-password ----------
    @_observed("reset_password", "Reset failed.")
    async def consume_reset_code(
        self,
        *,
        email: Optional[str],
        otp: Optional[str],
        new_password: Optional[str],
        confirm_password: Optional[str],
    ) -> FlowResult:
        email = normalize_email(email)
        otp = (otp or "").strip()
        if any(_blank(v) for v in (email, otp, new_password, confirm_password)):
            raise ValidationError("All fields are required.")
        if new_password != confirm_password:
            raise ValidationError("Passwords do not match.")
        self._check_length(new_password)

        async with self._otps.locked(email):
            stored = await self._otps.get(email)
            if stored is None or not secrets.compare_digest(stored.encode(), otp.encode()):
                raise InvalidOrExpiredCode()

            new_hash = await self._passwords.hash(new_password)
            # consume before writing: once the update may have committed, the code is gone
            entry = await self._otps.take(email)
            try:
                updated = await self._store.update_password_hash(email, new_hash)
            except StoreUnavailable:
                # the write did not happen, so the code stays usable
                await self._otps.restore(email, entry)
                raise
            if not updated:
                log.warning("reset code matched a missing user", extra={"extra": f"email={email}"})
                raise InvalidOrExpiredCode()

        log.info("password reset", extra={"extra": f"email={email}"})
        return FlowResult(message="Password updated.")
