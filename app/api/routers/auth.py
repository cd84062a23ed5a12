from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ...auth.deps import get_auth_flow
from ...domain.schemas.auth import (
    ErrorOut,
    ForgotPasswordIn,
    LoginIn,
    LoginOut,
    MessageOut,
    ResetPasswordIn,
    SignupIn,
)
from ...services.auth_flow import AuthFlow

router = APIRouter(tags=["auth"])


@router.post(
    "/signup",
    response_model=MessageOut,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorOut}, 409: {"model": ErrorOut}, 500: {"model": ErrorOut}},
)
async def signup(payload: SignupIn, flow: AuthFlow = Depends(get_auth_flow)):
    result = await flow.register(
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=payload.email,
        password=payload.password,
        confirm_password=payload.confirm_password,
    )
    return MessageOut(message=result.message)


@router.post(
    "/login",
    response_model=LoginOut,
    responses={400: {"model": ErrorOut}, 401: {"model": ErrorOut}, 500: {"model": ErrorOut}},
)
async def login(payload: LoginIn, flow: AuthFlow = Depends(get_auth_flow)):
    # no session is minted here; the caller owns whatever session wraps this
    result = await flow.authenticate(email=payload.email, password=payload.password)
    return LoginOut(message=result.message, user=result.user)


@router.post(
    "/forgot-password",
    response_model=MessageOut,
    responses={400: {"model": ErrorOut}, 404: {"model": ErrorOut}, 500: {"model": ErrorOut}},
)
async def forgot_password(payload: ForgotPasswordIn, flow: AuthFlow = Depends(get_auth_flow)):
    result = await flow.issue_reset_code(email=payload.email)
    return MessageOut(message=result.message)


@router.post(
    "/reset-password",
    response_model=MessageOut,
    responses={400: {"model": ErrorOut}, 500: {"model": ErrorOut}},
)
async def reset_password(payload: ResetPasswordIn, flow: AuthFlow = Depends(get_auth_flow)):
    result = await flow.consume_reset_code(
        email=payload.email,
        otp=payload.otp,
        new_password=payload.new_password,
        confirm_password=payload.confirm_password,
    )
    return MessageOut(message=result.message)
