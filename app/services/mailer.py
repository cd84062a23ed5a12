from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Optional, Protocol

from ..config import Settings

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send_message(self, *, to: str, subject: str, body: str) -> bool: ...


class ConsoleMailer:
    """DEV sender: log the message instead of delivering it."""

    async def send_message(self, *, to: str, subject: str, body: str) -> bool:
        logger.info("[DEV MAIL] to=%s subject=%s body=%s", to, subject, body)
        return True


class SMTPMailer:
    """Thin wrapper around smtplib with async-friendly send."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        from_address: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: float = 15,
    ) -> None:
        self._host = host
        self._port = port
        self._from = from_address
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._timeout = timeout

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
            if self._use_tls:
                server.starttls()
            if self._username and self._password:
                server.login(self._username, self._password)
            server.send_message(msg)

    async def send_message(self, *, to: str, subject: str, body: str) -> bool:
        msg = EmailMessage()
        msg["From"] = self._from
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._deliver, msg)
            return True
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP send to %s failed: %s", to, exc)
            return False


def build_mailer(settings: Settings) -> Notifier:
    if settings.MAIL_BACKEND == "console":
        return ConsoleMailer()
    missing = [
        key
        for key, value in [("SMTP_HOST", settings.SMTP_HOST), ("MAIL_FROM", settings.MAIL_FROM)]
        if not value
    ]
    if missing:
        raise RuntimeError(f"MAIL_BACKEND=smtp but missing settings: {', '.join(missing)}")
    return SMTPMailer(
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        from_address=settings.MAIL_FROM,
        username=settings.SMTP_USERNAME,
        password=settings.SMTP_PASSWORD,
        use_tls=settings.SMTP_USE_TLS,
        timeout=settings.MAIL_TIMEOUT_SEC,
    )
