from __future__ import annotations
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from ...repos.users import UserRecord


class _CamelIn(BaseModel):
    # every field is optional here: missing/blank values are reported as 400 by the flow,
    # not as a 422 from FastAPI
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True, extra="ignore")


class SignupIn(_CamelIn):
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    email: Optional[str] = None
    password: Optional[str] = None
    confirm_password: Optional[str] = Field(default=None, alias="confirmPassword")


class LoginIn(_CamelIn):
    email: Optional[str] = None
    password: Optional[str] = None


class ForgotPasswordIn(_CamelIn):
    email: Optional[str] = None


class ResetPasswordIn(_CamelIn):
    email: Optional[str] = None
    otp: Optional[str] = None
    new_password: Optional[str] = Field(default=None, alias="newPassword")
    confirm_password: Optional[str] = Field(default=None, alias="confirmPassword")


class UserOut(BaseModel):
    """Public projection of a user. Never carries the password hash."""
    model_config = ConfigDict(populate_by_name=True)

    id: int
    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")
    email: str

    @classmethod
    def from_record(cls, u: "UserRecord") -> "UserOut":
        return cls(id=u.id, first_name=u.first_name, last_name=u.last_name, email=u.email)


class MessageOut(BaseModel):
    success: bool = True
    message: str


class LoginOut(MessageOut):
    user: UserOut


class ErrorOut(BaseModel):
    message: str
