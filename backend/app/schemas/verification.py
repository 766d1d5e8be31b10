from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

Channel = Literal["whatsapp", "sms"]

COUNTRY_CODE_PATTERN = r"^\+\d{1,4}$"
CONTACT_NUMBER_PATTERN = r"^\d{5,15}$"
OTP_PATTERN = r"^\d{6}$"


class VerificationContactIn(BaseModel):
    country_code: str = Field(..., pattern=COUNTRY_CODE_PATTERN, examples=["+1"])
    contact_number: str = Field(..., pattern=CONTACT_NUMBER_PATTERN, examples=["5551234"])


class InitiateVerificationIn(VerificationContactIn):
    verification_method: Channel = "whatsapp"


class ResendVerificationIn(VerificationContactIn):
    verification_method: Channel


class VerifyOtpIn(VerificationContactIn):
    otp: str = Field(..., pattern=OTP_PATTERN)


class InitiateVerificationOut(BaseModel):
    normalized_phone: str
    channel: Channel
    expires_in_minutes: int


class ResendVerificationOut(BaseModel):
    channel: Channel
    contact_number: str
    country_code: str


class VerifyOtpOut(BaseModel):
    contact_number: str
    country_code: str
    verified_at: datetime
