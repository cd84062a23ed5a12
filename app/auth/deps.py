from __future__ import annotations
from fastapi import Request
from ..config import Settings
from ..db import SessionLocal
from ..repos.users import UserStore
from ..services.auth_flow import AuthFlow
from ..services.mailer import build_mailer
from ..services.otp_registry import MemoryOtpRegistry, OtpRegistry, RedisOtpRegistry
from .passwords import PasswordHashing


def build_otp_registry(settings: Settings) -> OtpRegistry:
    if settings.OTP_BACKEND == "redis":
        from ..redis_client import redis
        return RedisOtpRegistry(
            redis,
            ttl_seconds=settings.OTP_TTL_SECONDS,
            lock_timeout_sec=settings.OTP_LOCK_TIMEOUT_SEC,
        )
    return MemoryOtpRegistry(ttl_seconds=settings.OTP_TTL_SECONDS)


def build_auth_flow(settings: Settings) -> AuthFlow:
    """Wire the process-wide collaborators once, at app creation."""
    return AuthFlow(
        store=UserStore(SessionLocal),
        otps=build_otp_registry(settings),
        notifier=build_mailer(settings),
        passwords=PasswordHashing.from_settings(settings),
        min_password_length=settings.PASSWORD_MIN_LENGTH,
        reset_subject=settings.RESET_MAIL_SUBJECT,
    )


def get_auth_flow(request: Request) -> AuthFlow:
    return request.app.state.auth_flow
