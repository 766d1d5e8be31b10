from datetime import datetime
from typing import Callable

from fastapi import BackgroundTasks, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session, sessionmaker

from app.core.errors import Forbidden, InvalidToken
from app.core.security import now_utc
from app.db.session import get_db, get_session_factory
from app.models.user import User
from app.services.auth import AuthService
from app.services.dispatch import OtpDispatchQueue
from app.services.otp_provider import OtpProviderAdapter
from app.services.phone_verification import PhoneVerificationService
from app.services.rate_limit import RateLimiters
from app.services.tokens import TokenContext, TokenService, touch_last_used

bearer = HTTPBearer(auto_error=False)


def get_clock() -> Callable[[], datetime]:
    return now_utc


def get_dispatch_queue(request: Request) -> OtpDispatchQueue:
    return request.app.state.dispatch_queue


def get_otp_provider(request: Request) -> OtpProviderAdapter:
    return request.app.state.otp_provider


def get_rate_limiters(request: Request) -> RateLimiters:
    return request.app.state.rate_limiters


def get_verification_service(
    db: Session = Depends(get_db),
    dispatch_queue: OtpDispatchQueue = Depends(get_dispatch_queue),
    provider: OtpProviderAdapter = Depends(get_otp_provider),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> PhoneVerificationService:
    return PhoneVerificationService(db, dispatch_queue, provider, clock=clock)


def get_token_service(
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> TokenService:
    return TokenService(db, clock=clock)


def get_auth_service(
    db: Session = Depends(get_db),
    verifications: PhoneVerificationService = Depends(get_verification_service),
    tokens: TokenService = Depends(get_token_service),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> AuthService:
    return AuthService(db, verifications, tokens, clock=clock)


def get_bearer_token(creds: HTTPAuthorizationCredentials | None = Depends(bearer)) -> str:
    if creds is None or not creds.credentials:
        raise InvalidToken("No autorizado. Falta el token.")
    return creds.credentials


def get_token_context(
    background_tasks: BackgroundTasks,
    token: str = Depends(get_bearer_token),
    tokens: TokenService = Depends(get_token_service),
    session_factory: sessionmaker = Depends(get_session_factory),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> TokenContext:
    ctx = tokens.verify(token)
    # last_used_at se actualiza despues de responder, en su propia sesion.
    background_tasks.add_task(touch_last_used, session_factory, ctx.token_id, clock())
    return ctx


def get_current_user(ctx: TokenContext = Depends(get_token_context)) -> User:
    if ctx.user.status != "active":
        raise Forbidden()
    return ctx.user
