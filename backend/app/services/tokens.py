from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Callable
import uuid

from jose import JWTError
import sqlalchemy as sa
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.core.errors import Expired, InvalidToken, Revoked
from app.core.security import (
    as_utc,
    create_session_token,
    decode_token,
    hash_token_id,
    new_token_id,
    now_utc,
)
from app.models.auth_token import AuthToken
from app.models.user import User

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(days=settings.TOKEN_TTL_DAYS)


@dataclass(frozen=True)
class IssuedToken:
    token: str
    record: AuthToken


@dataclass(frozen=True)
class TokenContext:
    user: User
    token_id: uuid.UUID


class TokenService:
    """Emision, verificacion y revocacion de tokens de sesion.

    El token que recibe el cliente es un JWT firmado con un ``jti`` aleatorio.
    En base solo queda ``sha256(JWT_SECRET:jti)``; borrar esa fila invalida el
    token aunque la firma y el ``exp`` sigan siendo validos.
    """

    def __init__(self, db: Session, *, clock: Callable[[], datetime] = now_utc):
        self.db = db
        self.clock = clock

    def issue(self, user_id: uuid.UUID, name: str = "auth_token", ttl: timedelta | None = DEFAULT_TTL) -> IssuedToken:
        now = self.clock()
        jti = new_token_id()
        expires_at = now + ttl if ttl is not None else None
        record = AuthToken(
            user_id=user_id,
            name=name,
            token_hash=hash_token_id(jti),
            expires_at=expires_at,
            created_at=now,
        )
        self.db.add(record)
        self.db.flush()
        token = create_session_token(str(user_id), jti, issued_at=now, expires_at=expires_at)
        logger.info("Token %s emitido para usuario %s", name, user_id)
        return IssuedToken(token=token, record=record)

    def _parse(self, token: str) -> tuple[str, str, int | None]:
        try:
            payload = decode_token(token)
        except JWTError:
            raise InvalidToken()
        if payload.get("type") != "access":
            raise InvalidToken("Tipo de token invalido")
        sub = payload.get("sub")
        jti = payload.get("jti")
        if not sub or not jti:
            raise InvalidToken()
        exp = payload.get("exp")
        return str(sub), str(jti), int(exp) if exp is not None else None

    def _find(self, jti: str) -> AuthToken | None:
        return self.db.execute(
            sa.select(AuthToken).where(AuthToken.token_hash == hash_token_id(jti))
        ).scalar_one_or_none()

    def verify(self, token: str) -> TokenContext:
        sub, jti, exp = self._parse(token)
        record = self._find(jti)
        if record is None or str(record.user_id) != sub:
            raise Revoked()

        now = self.clock()
        record_expired = record.expires_at is not None and now > as_utc(record.expires_at)
        claim_expired = exp is not None and now.timestamp() > exp
        if record_expired or claim_expired:
            self.db.delete(record)
            self.db.commit()
            raise Expired("El token expiro", status_code=401)

        user = self.db.get(User, record.user_id)
        if user is None:
            raise Revoked()
        return TokenContext(user=user, token_id=record.id)

    def revoke(self, token: str) -> bool:
        _, jti, _ = self._parse(token)
        result = self.db.execute(sa.delete(AuthToken).where(AuthToken.token_hash == hash_token_id(jti)))
        return bool(result.rowcount)

    def revoke_all(self, user_id: uuid.UUID) -> int:
        result = self.db.execute(sa.delete(AuthToken).where(AuthToken.user_id == user_id))
        revoked = result.rowcount or 0
        logger.info("Revocados %s tokens del usuario %s", revoked, user_id)
        return revoked


def touch_last_used(session_factory: sessionmaker, token_id: uuid.UUID, when: datetime | None = None) -> None:
    # Best-effort: corre despues de la respuesta y nunca afecta la autenticacion.
    try:
        db = session_factory()
    except Exception:
        logger.warning("No se pudo abrir sesion para last_used_at del token %s", token_id, exc_info=True)
        return
    try:
        db.execute(
            sa.update(AuthToken)
            .where(AuthToken.id == token_id)
            .values(last_used_at=when or now_utc())
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.warning("No se pudo actualizar last_used_at del token %s", token_id, exc_info=True)
    finally:
        db.close()
