from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str
    display_name: str
    username: str
    email: str
    country_code: str
    phone_number: str
    phone_verified: bool
    phone_verified_at: datetime | None = None
    avatar: str | None = None
    bio: str | None = None
    status: str
    last_login_at: datetime | None = None
    created_at: datetime
