import uuid

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from app.core.security import now_utc
from app.db.base import Base

class PhoneVerification(Base):
    __tablename__ = "phone_verifications"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    country_code: Mapped[str] = mapped_column(sa.String(5), nullable=False)
    phone_number: Mapped[str] = mapped_column(sa.String(15), nullable=False)
    channel: Mapped[str] = mapped_column(sa.Text, nullable=False)
    provider_reference: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    dispatch_job_id: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    expires_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    attempts: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    verified: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    verified_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=now_utc)

    # Sin unique en (country_code, phone_number): el registro vigente es el
    # ultimo no verificado, y initiate borra el historial antes de crear uno nuevo.
    __table_args__ = (
        sa.CheckConstraint("channel in ('sms','whatsapp')", name="ck_phone_verification_channel"),
        sa.CheckConstraint("attempts >= 0", name="ck_phone_verification_attempts"),
        sa.Index("ix_phone_verifications_phone_created", "country_code", "phone_number", "created_at"),
    )
