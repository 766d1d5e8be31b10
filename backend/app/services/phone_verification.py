"""Maquina de estados de verificacion de telefono.

Estados: ``none`` -> ``pending`` -> ``verified``. Expirado y reemplazado se
modelan borrando la fila. El codigo nunca pasa por aqui salvo para
delegarlo al proveedor en ``verify``; no se guarda ni se loguea.

Los metodos no hacen commit salvo al descartar una fila expirada (el borrado
tiene que persistir aunque la operacion falle); en el resto el llamador
(handler HTTP o ``AuthService``) decide el limite de la transaccion.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Callable

import sqlalchemy as sa
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import Conflict, Expired, InvalidCode, NotFound, RateExceeded
from app.core.security import as_utc, mask_phone, normalize_phone, now_utc
from app.models.phone_verification import PhoneVerification
from app.models.user import User
from app.services.dispatch import OtpDispatchQueue
from app.services.otp_provider import OtpProviderAdapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InitiateResult:
    normalized_phone: str
    channel: str
    expires_in_minutes: int
    verification: PhoneVerification


class PhoneVerificationService:
    def __init__(
        self,
        db: Session,
        dispatch_queue: OtpDispatchQueue,
        provider: OtpProviderAdapter,
        *,
        clock: Callable[[], datetime] = now_utc,
        ttl_minutes: int | None = None,
        max_resends: int | None = None,
    ):
        self.db = db
        self.queue = dispatch_queue
        self.provider = provider
        self.clock = clock
        self.ttl_minutes = ttl_minutes if ttl_minutes is not None else settings.OTP_TTL_MINUTES
        self.max_resends = max_resends if max_resends is not None else settings.OTP_MAX_RESENDS

    def _expiry(self) -> datetime:
        return self.clock() + timedelta(minutes=self.ttl_minutes)

    def is_expired(self, verification: PhoneVerification) -> bool:
        return self.clock() > as_utc(verification.expires_at)

    def user_exists(self, country_code: str, phone_number: str) -> bool:
        row = self.db.execute(
            sa.select(User.id).where(User.country_code == country_code, User.phone_number == phone_number)
        ).first()
        return row is not None

    def get_pending(self, country_code: str, phone_number: str) -> PhoneVerification | None:
        return self.db.execute(
            sa.select(PhoneVerification)
            .where(
                PhoneVerification.country_code == country_code,
                PhoneVerification.phone_number == phone_number,
                PhoneVerification.verified.is_(False),
            )
            .order_by(PhoneVerification.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def delete_all(self, country_code: str, phone_number: str) -> int:
        result = self.db.execute(
            sa.delete(PhoneVerification).where(
                PhoneVerification.country_code == country_code,
                PhoneVerification.phone_number == phone_number,
            )
        )
        return result.rowcount or 0

    def initiate(self, country_code: str, phone_number: str, channel: str, *, require_account: bool = False) -> InitiateResult:
        exists = self.user_exists(country_code, phone_number)
        if require_account and not exists:
            raise NotFound("No hay una cuenta con este telefono. Registrate primero.")
        if not require_account and exists:
            raise Conflict(
                "Ya existe una cuenta con este telefono. Inicia sesion.",
                context={"user_exists": True},
            )

        normalized = normalize_phone(country_code, phone_number)
        # Concurrencia: sin lock por telefono, el ultimo initiate gana.
        self.delete_all(country_code, phone_number)
        job_id = self.queue.enqueue_send_otp(normalized, channel)

        verification = PhoneVerification(
            country_code=country_code,
            phone_number=phone_number,
            channel=channel,
            provider_reference=None,
            dispatch_job_id=job_id,
            expires_at=self._expiry(),
            attempts=0,
            verified=False,
            created_at=self.clock(),
        )
        self.db.add(verification)
        self.db.flush()

        logger.info("Verificacion %s iniciada via %s para %s", "login" if require_account else "registro", channel, mask_phone(normalized))
        return InitiateResult(
            normalized_phone=normalized,
            channel=channel,
            expires_in_minutes=self.ttl_minutes,
            verification=verification,
        )

    def resend(self, country_code: str, phone_number: str, channel: str) -> PhoneVerification:
        verification = self.get_pending(country_code, phone_number)
        if verification is None:
            raise NotFound("No hay una verificacion pendiente. Inicia el registro de nuevo.")
        if verification.attempts >= self.max_resends:
            raise RateExceeded(
                "Alcanzaste el maximo de reenvios. Inicia el registro de nuevo.",
                context={"attempts": verification.attempts},
            )

        normalized = normalize_phone(country_code, phone_number)
        verification.attempts = verification.attempts + 1
        job_id = self.queue.enqueue_send_otp(normalized, channel)

        verification.channel = channel
        verification.provider_reference = None
        verification.dispatch_job_id = job_id
        verification.expires_at = self._expiry()
        self.db.flush()

        logger.info("OTP reenviado via %s para %s (intento %s)", channel, mask_phone(normalized), verification.attempts)
        return verification

    def verify(self, country_code: str, phone_number: str, code: str) -> PhoneVerification:
        verification = self.get_pending(country_code, phone_number)
        if verification is None:
            raise NotFound("No hay una verificacion pendiente. Solicita un nuevo codigo.")

        normalized = normalize_phone(country_code, phone_number)
        if self.is_expired(verification):
            self.db.delete(verification)
            self.db.commit()
            logger.info("Verificacion expirada descartada para %s", mask_phone(normalized))
            raise Expired("El codigo expiro. Solicita uno nuevo.", context={"expired": True})

        # ProviderUnavailable se propaga tal cual: falla dura, sin reintento.
        result = self.provider.check(normalized, code)
        if not result.approved:
            logger.info("Codigo rechazado por el proveedor para %s", mask_phone(normalized))
            raise InvalidCode()

        verification.verified = True
        verification.verified_at = self.clock()
        self.db.flush()
        logger.info("Telefono verificado %s", mask_phone(normalized))
        return verification

    def get_verified(self, country_code: str, phone_number: str) -> PhoneVerification:
        verification = self.db.execute(
            sa.select(PhoneVerification)
            .where(
                PhoneVerification.country_code == country_code,
                PhoneVerification.phone_number == phone_number,
                PhoneVerification.verified.is_(True),
            )
            .order_by(PhoneVerification.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        if verification is None:
            raise NotFound(
                "Telefono no verificado. Completa la verificacion OTP primero.",
                context={"phone_verified": False},
                status_code=400,
            )
        if self.is_expired(verification):
            self.db.delete(verification)
            self.db.commit()
            raise Expired(
                "La verificacion del telefono expiro. Verifica de nuevo.",
                context={"phone_verified": False, "expired": True},
            )
        return verification

    def consume(self, verification: PhoneVerification) -> None:
        self.db.delete(verification)
        self.db.flush()
