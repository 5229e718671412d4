from datetime import UTC, datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class Credential(SQLModel, table=True):
    """One linked external account per (user, platform)."""

    __tablename__ = "credentials"
    __table_args__ = (UniqueConstraint("user_id", "platform"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    platform: str = Field(index=True)
    provider_id: str = Field(default="")
    access_token: str = Field(default="")  # encrypted
    refresh_token: str = Field(default="")  # encrypted
    token_expires_at: datetime | None = Field(default=None)
    scopes: str = Field(default="[]")  # JSON
    login_origin: str = Field(default="web")  # "web" | "android" | "ios"

    # Pending authorization, present between redirect and callback
    pending_state: str | None = Field(default=None, unique=True, index=True)
    pending_verifier: str | None = Field(default=None)
    pending_created_at: datetime | None = Field(default=None)

    # Single-use handle for clients that cannot receive the redirect
    session_token: str | None = Field(default=None, unique=True, index=True)
    session_created_at: datetime | None = Field(default=None)

    # Profile snapshot taken at link time
    username: str = Field(default="")
    display_name: str = Field(default="")
    profile_image: str = Field(default="")
    profile_extra: str = Field(default="{}")  # JSON

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_linked(self) -> bool:
        return bool(self.access_token)
