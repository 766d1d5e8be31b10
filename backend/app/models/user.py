import uuid

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.core.security import now_utc
from app.db.base import Base

class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    country_code: Mapped[str] = mapped_column(sa.String(5), nullable=False)
    phone_number: Mapped[str] = mapped_column(sa.String(15), nullable=False)
    first_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    display_name: Mapped[str] = mapped_column(sa.String(201), nullable=False)
    username: Mapped[str] = mapped_column(sa.String(50), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(sa.Text, unique=True, nullable=False)
    avatar: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    bio: Mapped[str | None] = mapped_column(sa.String(500), nullable=True)
    phone_verified: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    phone_verified_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(sa.Text, nullable=False, default="active")
    last_login_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=now_utc)

    __table_args__ = (
        sa.CheckConstraint("status in ('active','blocked')", name="ck_user_status"),
        sa.UniqueConstraint("country_code", "phone_number", name="uq_users_phone"),
    )

    tokens = relationship("AuthToken", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
