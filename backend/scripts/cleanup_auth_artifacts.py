from datetime import datetime, timedelta

import sqlalchemy as sa
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import now_utc
from app.db.session import SessionLocal
from app.models.auth_token import AuthToken
from app.models.phone_verification import PhoneVerification


def cleanup(db: Session, now: datetime | None = None) -> dict[str, int]:
    now = now or now_utc()
    verification_cutoff = now - timedelta(days=settings.AUTH_ARTIFACT_RETENTION_DAYS)

    deleted_verifications = db.execute(
        sa.delete(PhoneVerification).where(PhoneVerification.expires_at < verification_cutoff)
    ).rowcount

    deleted_tokens = db.execute(
        sa.delete(AuthToken).where(AuthToken.expires_at.is_not(None), AuthToken.expires_at < now)
    ).rowcount

    return {"phone_verifications": deleted_verifications or 0, "auth_tokens": deleted_tokens or 0}


def main():
    db = SessionLocal()
    try:
        deleted = cleanup(db)
        db.commit()
        print(
            "ok: limpieza completada "
            f"(phone_verifications={deleted['phone_verifications']}, "
            f"auth_tokens={deleted['auth_tokens']})"
        )
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
