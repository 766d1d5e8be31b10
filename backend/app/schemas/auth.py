from pydantic import BaseModel, Field, HttpUrl, field_validator

from app.schemas.user import UserOut
from app.schemas.verification import COUNTRY_CODE_PATTERN, CONTACT_NUMBER_PATTERN, OTP_PATTERN, Channel


def looks_like_email(value: str) -> bool:
    v = value.strip()
    return "@" in v and "." in v.split("@")[-1]


class PhoneIn(BaseModel):
    country_code: str = Field(..., pattern=COUNTRY_CODE_PATTERN, examples=["+1"])
    phone_number: str = Field(..., pattern=CONTACT_NUMBER_PATTERN, examples=["5551234"])


class RegisterIn(PhoneIn):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    username: str = Field(..., pattern=r"^[a-zA-Z0-9_]{3,50}$")
    email: str = Field(..., max_length=254, examples=["user@example.com"])
    avatar: HttpUrl | None = None
    bio: str | None = Field(default=None, max_length=500)

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        if not looks_like_email(value):
            raise ValueError("Invalid email")
        return value.strip().lower()


class LoginOtpRequestIn(PhoneIn):
    channel: Channel = "whatsapp"


class LoginOtpVerifyIn(PhoneIn):
    otp: str = Field(..., pattern=OTP_PATTERN)


class LoginOtpRequestOut(BaseModel):
    channel: Channel
    expires_in_minutes: int


class AuthOut(BaseModel):
    user: UserOut
    auth_token: str


class MeOut(BaseModel):
    user: UserOut


class LogoutAllOut(BaseModel):
    revoked: int
