from fastapi import APIRouter, Depends, status

from app.api.deps import get_auth_service, get_bearer_token, get_current_user, get_rate_limiters
from app.core.security import normalize_phone
from app.models.user import User
from app.schemas.auth import (
    AuthOut,
    LoginOtpRequestIn,
    LoginOtpRequestOut,
    LoginOtpVerifyIn,
    LogoutAllOut,
    MeOut,
    RegisterIn,
)
from app.schemas.user import UserOut
from app.services.auth import AuthService
from app.services.rate_limit import RateLimiters

router = APIRouter()


@router.post("/register", response_model=AuthOut, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterIn, auth: AuthService = Depends(get_auth_service)):
    result = auth.register(payload)
    return AuthOut(user=UserOut.model_validate(result.user), auth_token=result.token)


@router.post("/phone-login/request-otp", response_model=LoginOtpRequestOut)
def request_login_otp(
    payload: LoginOtpRequestIn,
    limiters: RateLimiters = Depends(get_rate_limiters),
    auth: AuthService = Depends(get_auth_service),
):
    limiters.login.hit(normalize_phone(payload.country_code, payload.phone_number))
    result = auth.request_login_otp(payload.country_code, payload.phone_number, payload.channel)
    return LoginOtpRequestOut(channel=result.channel, expires_in_minutes=result.expires_in_minutes)


@router.post("/phone-login/verify-otp", response_model=AuthOut)
def verify_login_otp(payload: LoginOtpVerifyIn, auth: AuthService = Depends(get_auth_service)):
    result = auth.login(payload.country_code, payload.phone_number, payload.otp)
    return AuthOut(user=UserOut.model_validate(result.user), auth_token=result.token)


@router.post("/logout")
def logout(token: str = Depends(get_bearer_token), auth: AuthService = Depends(get_auth_service)):
    auth.logout(token)
    return {}


@router.post("/logout-all", response_model=LogoutAllOut)
def logout_all(user: User = Depends(get_current_user), auth: AuthService = Depends(get_auth_service)):
    return LogoutAllOut(revoked=auth.logout_all(user))


@router.get("/me", response_model=MeOut)
def me(user: User = Depends(get_current_user)):
    return MeOut(user=UserOut.model_validate(user))
