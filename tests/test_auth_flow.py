import pytest

from app.services.auth_flow import AuthFlow, normalize_email
from app.services.errors import (
    DuplicateEmail,
    InvalidCredentials,
    InvalidOrExpiredCode,
    UnknownEmail,
    ValidationError,
)
from app.services.otp_registry import MemoryOtpRegistry
from tests.conftest import register

pytestmark = pytest.mark.asyncio


async def _reset(flow: AuthFlow, email: str, code: str, new_password: str = "newpass123"):
    return await flow.consume_reset_code(
        email=email, otp=code, new_password=new_password, confirm_password=new_password
    )


async def test_normalize_email():
    assert normalize_email("  Jane@X.com ") == "jane@x.com"
    assert normalize_email(None) == ""


# ---------- register ----------
async def test_register_then_duplicate_ignores_case(flow: AuthFlow):
    res = await register(flow, "A@x.com")
    assert res.message == "User registered successfully."
    with pytest.raises(DuplicateEmail):
        await register(flow, "a@x.com")


async def test_register_stores_normalized_email_and_trimmed_names(flow: AuthFlow, store):
    await register(flow, "  Jane@X.com ", first="  Jane ", last=" Doe  ")
    user = await store.lookup_by_email("jane@x.com")
    assert user is not None
    assert (user.first_name, user.last_name, user.email) == ("Jane", "Doe", "jane@x.com")
    assert user.password_hash != "longenough1"
    assert user.password_hash.startswith("$argon2")


@pytest.mark.parametrize(
    "fields, message",
    [
        ({"first_name": ""}, "All fields are required."),
        ({"last_name": "   "}, "All fields are required."),
        ({"email": None}, "All fields are required."),
        ({"confirm_password": "different1"}, "Passwords don't match."),
        ({"password": "short12", "confirm_password": "short12"}, "Password must be at least 8 characters."),
    ],
)
async def test_register_validation(flow: AuthFlow, store, fields, message):
    payload = dict(
        first_name="Jane", last_name="Doe", email="jane@x.com",
        password="longenough1", confirm_password="longenough1",
    )
    payload.update(fields)
    with pytest.raises(ValidationError) as exc:
        await flow.register(**payload)
    assert exc.value.message == message
    assert await store.lookup_by_email("jane@x.com") is None


async def test_register_mismatch_reported_before_length(flow: AuthFlow):
    with pytest.raises(ValidationError) as exc:
        await flow.register(
            first_name="J", last_name="D", email="j@x.com", password="short", confirm_password="other"
        )
    assert exc.value.message == "Passwords don't match."


async def test_password_length_boundary(flow: AuthFlow):
    await register(flow, "eight@x.com", password="12345678")
    with pytest.raises(ValidationError):
        await register(flow, "seven@x.com", password="1234567")


# ---------- authenticate ----------
async def test_authenticate_returns_public_projection(flow: AuthFlow):
    await register(flow, "jane@x.com")
    res = await flow.authenticate(email=" JANE@x.com", password="longenough1")
    assert res.message == "Login successful"
    dumped = res.user.model_dump(by_alias=True)
    assert set(dumped) == {"id", "firstName", "lastName", "email"}
    assert dumped["email"] == "jane@x.com"


async def test_wrong_password_and_unknown_email_are_indistinguishable(flow: AuthFlow):
    await register(flow, "jane@x.com")
    with pytest.raises(InvalidCredentials) as wrong:
        await flow.authenticate(email="jane@x.com", password="wrongpass1")
    with pytest.raises(InvalidCredentials) as unknown:
        await flow.authenticate(email="nobody@x.com", password="wrongpass1")
    assert wrong.value.message == unknown.value.message
    assert wrong.value.status_code == unknown.value.status_code == 401


async def test_authenticate_requires_both_fields(flow: AuthFlow):
    with pytest.raises(ValidationError):
        await flow.authenticate(email="jane@x.com", password="")


# ---------- reset flow ----------
async def test_issue_then_consume_changes_password(flow: AuthFlow, notifier):
    await register(flow, "jane@x.com")
    res = await flow.issue_reset_code(email="Jane@x.com")
    assert res.message == "OTP sent to email."

    msg = notifier.sent[-1]
    assert msg["to"] == "jane@x.com"
    assert msg["subject"] == "Subtle Marketing Password Reset"
    code = notifier.last_code("jane@x.com")
    assert len(code) == 6 and 100000 <= int(code) <= 999999

    await _reset(flow, "jane@x.com", code)
    assert (await flow.authenticate(email="jane@x.com", password="newpass123")).user is not None
    with pytest.raises(InvalidCredentials):
        await flow.authenticate(email="jane@x.com", password="longenough1")


async def test_code_cannot_be_replayed(flow: AuthFlow, notifier):
    await register(flow, "jane@x.com")
    await flow.issue_reset_code(email="jane@x.com")
    code = notifier.last_code("jane@x.com")

    await _reset(flow, "jane@x.com", code)
    with pytest.raises(InvalidOrExpiredCode):
        await _reset(flow, "jane@x.com", code, new_password="another123")


async def test_new_code_invalidates_previous(flow: AuthFlow, notifier, registry):
    await register(flow, "jane@x.com")
    await flow.issue_reset_code(email="jane@x.com")
    first = notifier.last_code("jane@x.com")
    while True:
        await flow.issue_reset_code(email="jane@x.com")
        second = notifier.last_code("jane@x.com")
        if second != first:
            break

    assert len(registry) == 1
    with pytest.raises(InvalidOrExpiredCode):
        await _reset(flow, "jane@x.com", first)
    await _reset(flow, "jane@x.com", second)


async def test_unknown_email_on_issue(flow: AuthFlow, notifier, registry):
    with pytest.raises(UnknownEmail) as exc:
        await flow.issue_reset_code(email="ghost@x.com")
    assert exc.value.status_code == 404
    assert notifier.sent == []
    assert len(registry) == 0


async def test_missing_and_wrong_code_give_same_error(flow: AuthFlow, notifier):
    await register(flow, "jane@x.com")
    with pytest.raises(InvalidOrExpiredCode) as missing:
        await _reset(flow, "jane@x.com", "123456")

    await flow.issue_reset_code(email="jane@x.com")
    code = notifier.last_code("jane@x.com")
    wrong = "100000" if code != "100000" else "100001"
    with pytest.raises(InvalidOrExpiredCode) as mismatch:
        await _reset(flow, "jane@x.com", wrong)
    assert missing.value.message == mismatch.value.message

    # a wrong guess does not burn the real code
    await _reset(flow, "jane@x.com", code)


async def test_consume_validation_order(flow: AuthFlow):
    with pytest.raises(ValidationError) as exc:
        await flow.consume_reset_code(email="jane@x.com", otp="", new_password="a", confirm_password="a")
    assert exc.value.message == "All fields are required."

    with pytest.raises(ValidationError) as exc:
        await flow.consume_reset_code(
            email="jane@x.com", otp="123456", new_password="newpass123", confirm_password="newpass124"
        )
    assert exc.value.message == "Passwords do not match."


async def test_reset_new_password_length_boundary(flow: AuthFlow, notifier):
    await register(flow, "jane@x.com")
    await flow.issue_reset_code(email="jane@x.com")
    code = notifier.last_code("jane@x.com")

    with pytest.raises(ValidationError) as exc:
        await _reset(flow, "jane@x.com", code, new_password="x" * 7)
    assert exc.value.message == "Password must be at least 8 characters."

    # a rejected password does not spend the code
    await _reset(flow, "jane@x.com", code, new_password="x" * 8)
    await flow.authenticate(email="jane@x.com", password="x" * 8)


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


async def test_expired_code_is_rejected(store, notifier, passwords):
    clock = _Clock()
    flow = AuthFlow(
        store=store,
        otps=MemoryOtpRegistry(ttl_seconds=600, clock=clock),
        notifier=notifier,
        passwords=passwords,
    )
    await register(flow, "jane@x.com")
    await flow.issue_reset_code(email="jane@x.com")
    code = notifier.last_code("jane@x.com")

    clock.now += 600
    with pytest.raises(InvalidOrExpiredCode) as exc:
        await _reset(flow, "jane@x.com", code)
    assert exc.value.message == "Invalid or expired OTP."
    await flow.authenticate(email="jane@x.com", password="longenough1")


async def test_jane_scenario(flow: AuthFlow, notifier):
    await flow.register(
        first_name="Jane", last_name="Doe", email="jane@x.com",
        password="longenough1", confirm_password="longenough1",
    )
    await flow.issue_reset_code(email="jane@x.com")
    await flow.consume_reset_code(
        email="jane@x.com",
        otp=notifier.last_code("jane@x.com"),
        new_password="newpass123",
        confirm_password="newpass123",
    )
    res = await flow.authenticate(email="jane@x.com", password="newpass123")
    assert res.user.email == "jane@x.com"
