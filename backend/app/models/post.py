from datetime import UTC, datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class PostRecord(SQLModel, table=True):
    __tablename__ = "post_records"
    __table_args__ = (UniqueConstraint("platform", "provider_post_id"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    platform: str = Field(index=True)
    provider_post_id: str | None = Field(default=None)
    content: str = Field(default="")
    media_url: str | None = Field(default=None)
    post_url: str | None = Field(default=None)
    status: str = Field(default="posted", index=True)  # PostStatus value
    posted_at: datetime = Field(default_factory=lambda: datetime.now(UTC), index=True)
    scheduled_for: datetime | None = Field(default=None, index=True)
    error: str | None = Field(default=None)

    # Account snapshot at post time
    account_id: str = Field(default="")
    account_username: str = Field(default="")
    account_name: str = Field(default="")
    account_image: str = Field(default="")

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
