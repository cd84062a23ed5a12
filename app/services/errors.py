from __future__ import annotations
from fastapi import status


class AuthFlowError(Exception):
    """Base for every failure the auth flows report to a caller.

    ``message`` is safe to show to an end user; internal detail goes to the log.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AuthFlowError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "All fields are required."


class InvalidOrExpiredCode(AuthFlowError):
    # same error for "no pending code" and "wrong code"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid or expired OTP."


class InvalidCredentials(AuthFlowError):
    # never distinguishes unknown email from wrong password
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid email or password."


class UnknownEmail(AuthFlowError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Email not registered."


class DuplicateEmail(AuthFlowError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Email already exists."


class NotificationFailed(AuthFlowError):
    default_message = "Error sending OTP."


class StoreUnavailable(AuthFlowError):
    default_message = "Internal server error."
