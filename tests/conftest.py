import asyncio
import os
import re
import tempfile

# IMPORTANT: configure the environment before any app module reads settings
_DB_DIR = tempfile.mkdtemp(prefix="subtle-accounts-test-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/test.db"
os.environ["ENV"] = "test"
os.environ["OTP_BACKEND"] = "memory"
os.environ["MAIL_BACKEND"] = "console"
os.environ["ARGON2_TIME_COST"] = "1"
os.environ["ARGON2_MEMORY_COST"] = "8192"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.auth.deps import get_auth_flow
from app.auth.passwords import PasswordHashing
from app.db import engine, SessionLocal
from app.models import Base
from app.repos.users import UserStore
from app.services.auth_flow import AuthFlow
from app.services.otp_registry import MemoryOtpRegistry


# Fresh schema per test, on the SAME loop as the test function; dispose the
# engine afterwards so no pooled connection leaks into the next test's loop.
@pytest_asyncio.fixture(autouse=True, loop_scope="function")
async def _db_clean():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


class FakeNotifier:
    """Records outgoing mail; ``result`` may be True, False or an exception to raise."""

    def __init__(self):
        self.sent: list[dict] = []
        self.result = True
        self.gate: asyncio.Event | None = None  # when set, sends block until the event fires

    async def send_message(self, *, to: str, subject: str, body: str) -> bool:
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(self.result, BaseException):
            raise self.result
        if self.result:
            self.sent.append({"to": to, "subject": subject, "body": body})
        return self.result

    def last_code(self, to: str) -> str:
        for msg in reversed(self.sent):
            if msg["to"] == to:
                return re.search(r"\b(\d{6})\b", msg["body"]).group(1)
        raise AssertionError(f"no mail sent to {to}")


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def registry():
    return MemoryOtpRegistry(ttl_seconds=0)


@pytest.fixture(scope="session")
def passwords():
    return PasswordHashing(time_cost=1, memory_cost=8192, parallelism=1)


@pytest.fixture
def store():
    return UserStore(SessionLocal)


@pytest.fixture
def flow(store, registry, notifier, passwords):
    return AuthFlow(
        store=store,
        otps=registry,
        notifier=notifier,
        passwords=passwords,
        min_password_length=8,
        reset_subject="Subtle Marketing Password Reset",
    )


@pytest_asyncio.fixture
async def client(flow):
    from app.main import create_app

    app = create_app()
    app.dependency_overrides[get_auth_flow] = lambda: flow
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


# ---------- helpers ----------
async def register(flow: AuthFlow, email: str, password: str = "longenough1", first: str = "Jane", last: str = "Doe"):
    return await flow.register(
        first_name=first, last_name=last, email=email, password=password, confirm_password=password
    )
