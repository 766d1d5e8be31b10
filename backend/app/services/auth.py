from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Callable

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import Conflict, Forbidden, NotFound
from app.core.security import now_utc
from app.models.user import User
from app.schemas.auth import RegisterIn
from app.services.phone_verification import InitiateResult, PhoneVerificationService
from app.services.tokens import TokenService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthResult:
    user: User
    token: str


class AuthService:
    """Registro y login por telefono sobre la maquina de verificacion."""

    def __init__(
        self,
        db: Session,
        verifications: PhoneVerificationService,
        tokens: TokenService,
        *,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.db = db
        self.verifications = verifications
        self.tokens = tokens
        self.clock = clock

    def _find_user_by_phone(self, country_code: str, phone_number: str) -> User | None:
        return self.db.execute(
            sa.select(User).where(User.country_code == country_code, User.phone_number == phone_number)
        ).scalar_one_or_none()

    def _ensure_unique(self, payload: RegisterIn) -> None:
        existing = self.db.execute(
            sa.select(User).where(
                sa.or_(
                    User.email == payload.email,
                    User.username == payload.username,
                    sa.and_(User.country_code == payload.country_code, User.phone_number == payload.phone_number),
                )
            ).limit(1)
        ).scalar_one_or_none()
        if existing is None:
            return
        if existing.email == payload.email:
            raise Conflict("Ya existe una cuenta con este email")
        if existing.username == payload.username:
            raise Conflict("Este username ya esta en uso")
        raise Conflict("Ya existe una cuenta con este telefono")

    def register(self, payload: RegisterIn) -> AuthResult:
        verification = self.verifications.get_verified(payload.country_code, payload.phone_number)
        self._ensure_unique(payload)

        user = User(
            country_code=payload.country_code,
            phone_number=payload.phone_number,
            first_name=payload.first_name,
            last_name=payload.last_name,
            display_name=f"{payload.first_name} {payload.last_name}",
            username=payload.username,
            email=payload.email,
            avatar=str(payload.avatar) if payload.avatar else None,
            bio=payload.bio,
            phone_verified=True,
            phone_verified_at=verification.verified_at or self.clock(),
            status="active",
            created_at=self.clock(),
        )
        # Alta de usuario, consumo de la verificacion y token van en un solo commit.
        try:
            self.db.add(user)
            self.db.flush()
            self.verifications.consume(verification)
            issued = self.tokens.issue(user.id)
            self.db.commit()
        except IntegrityError as exc:
            # Otro registro gano la carrera despues de _ensure_unique.
            self.db.rollback()
            logger.info("Registro concurrente rechazado para %s", payload.username)
            raise Conflict("Ya existe una cuenta con estos datos") from exc
        except Exception:
            self.db.rollback()
            raise

        logger.info("Usuario registrado %s (id=%s)", user.username, user.id)
        return AuthResult(user=user, token=issued.token)

    def request_login_otp(self, country_code: str, phone_number: str, channel: str) -> InitiateResult:
        result = self.verifications.initiate(country_code, phone_number, channel, require_account=True)
        self.db.commit()
        return result

    def login(self, country_code: str, phone_number: str, code: str) -> AuthResult:
        user = self._find_user_by_phone(country_code, phone_number)
        if user is None:
            raise NotFound("No hay una cuenta con este telefono")
        if user.status != "active":
            raise Forbidden()

        verification = self.verifications.verify(country_code, phone_number, code)
        try:
            user.last_login_at = self.clock()
            self.verifications.consume(verification)
            issued = self.tokens.issue(user.id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Login por telefono exitoso para usuario %s", user.id)
        return AuthResult(user=user, token=issued.token)

    def logout(self, token: str) -> bool:
        revoked = self.tokens.revoke(token)
        self.db.commit()
        return revoked

    def logout_all(self, user: User) -> int:
        revoked = self.tokens.revoke_all(user.id)
        self.db.commit()
        return revoked
