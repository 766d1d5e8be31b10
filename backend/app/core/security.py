import hashlib
import secrets
from datetime import datetime, timezone

from jose import jwt

from app.core.config import settings

ALGO = "HS256"

def now_utc() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: datetime) -> datetime:
    # SQLite devuelve datetimes naive aunque la columna sea timezone=True
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

def new_token_id() -> str:
    return secrets.token_urlsafe(32)

def hash_token_id(jti: str) -> str:
    raw = (settings.JWT_SECRET + ":" + jti).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()

def create_session_token(sub: str, jti: str, issued_at: datetime, expires_at: datetime | None) -> str:
    payload = {"sub": sub, "jti": jti, "type": "access", "iat": int(issued_at.timestamp())}
    if expires_at is not None:
        payload["exp"] = int(expires_at.timestamp())
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGO)

def decode_token(token: str) -> dict:
    # La expiracion se valida contra el registro persistido y el reloj del servicio.
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGO], options={"verify_exp": False})

def normalize_phone(country_code: str, phone_number: str) -> str:
    raw = (country_code + phone_number).replace(" ", "")
    digits = "".join(ch for ch in raw if ch.isdigit())
    return "+" + digits

def mask_phone(phone: str) -> str:
    if len(phone) <= 6:
        return "***"
    return f"{phone[:4]}***{phone[-2:]}"
