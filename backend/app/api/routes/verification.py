from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_rate_limiters, get_verification_service
from app.core.security import normalize_phone
from app.db.session import get_db
from app.schemas.verification import (
    InitiateVerificationIn,
    InitiateVerificationOut,
    ResendVerificationIn,
    ResendVerificationOut,
    VerifyOtpIn,
    VerifyOtpOut,
)
from app.services.phone_verification import PhoneVerificationService
from app.services.rate_limit import RateLimiters

router = APIRouter()


@router.post("/initiate", response_model=InitiateVerificationOut)
def initiate(
    payload: InitiateVerificationIn,
    db: Session = Depends(get_db),
    limiters: RateLimiters = Depends(get_rate_limiters),
    verifications: PhoneVerificationService = Depends(get_verification_service),
):
    limiters.initiate.hit(normalize_phone(payload.country_code, payload.contact_number))
    result = verifications.initiate(
        payload.country_code,
        payload.contact_number,
        payload.verification_method,
        require_account=False,
    )
    db.commit()
    return InitiateVerificationOut(
        normalized_phone=result.normalized_phone,
        channel=result.channel,
        expires_in_minutes=result.expires_in_minutes,
    )


@router.post("/resend", response_model=ResendVerificationOut)
def resend(
    payload: ResendVerificationIn,
    db: Session = Depends(get_db),
    limiters: RateLimiters = Depends(get_rate_limiters),
    verifications: PhoneVerificationService = Depends(get_verification_service),
):
    limiters.resend.hit(normalize_phone(payload.country_code, payload.contact_number))
    verification = verifications.resend(payload.country_code, payload.contact_number, payload.verification_method)
    db.commit()
    return ResendVerificationOut(
        channel=verification.channel,
        contact_number=payload.contact_number,
        country_code=payload.country_code,
    )


@router.post("/verify", response_model=VerifyOtpOut)
def verify(
    payload: VerifyOtpIn,
    db: Session = Depends(get_db),
    verifications: PhoneVerificationService = Depends(get_verification_service),
):
    verification = verifications.verify(payload.country_code, payload.contact_number, payload.otp)
    db.commit()
    return VerifyOtpOut(
        contact_number=payload.contact_number,
        country_code=payload.country_code,
        verified_at=verification.verified_at,
    )
