"""Post record store: local log of what was published."""

import logging
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.errors import StoreUnavailable
from app.models.common import PostStatus
from app.models.post import PostRecord

logger = logging.getLogger(__name__)


class PostRecordStore:
    def __init__(self, db: Session):
        self.db = db

    def add(self, record: PostRecord) -> PostRecord:
        try:
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable(f"Post store unavailable: {e}")
        return record

    def get(self, record_id: int) -> PostRecord | None:
        return self.db.get(PostRecord, record_id)

    def recent(self, user_id: str, platform: str | None, limit: int) -> list[PostRecord]:
        """Newest first. Without a platform, the history across all platforms."""
        statement = select(PostRecord).where(PostRecord.user_id == user_id)
        if platform:
            statement = statement.where(PostRecord.platform == platform)
        try:
            return list(
                self.db.exec(
                    statement
                    .order_by(PostRecord.posted_at.desc(), PostRecord.id.desc())
                    .limit(limit)
                ).all()
            )
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Post store unavailable: {e}")

    def mark_publishing(self, record: PostRecord) -> PostRecord:
        record.status = PostStatus.PUBLISHING.value
        return self.add(record)

    def mark_posted(
        self, record: PostRecord, provider_post_id: str, post_url: str | None
    ) -> PostRecord:
        record.status = PostStatus.POSTED.value
        record.provider_post_id = provider_post_id
        record.post_url = post_url
        record.posted_at = datetime.now(UTC)
        record.error = None
        return self.add(record)

    def mark_failed(self, record: PostRecord, error: str) -> PostRecord:
        record.status = PostStatus.FAILED.value
        record.error = error
        return self.add(record)

    def due_scheduled(self, now: datetime | None = None) -> list[PostRecord]:
        now = now or datetime.now(UTC)
        try:
            return list(
                self.db.exec(
                    select(PostRecord)
                    .where(
                        PostRecord.status == PostStatus.SCHEDULED.value,
                        PostRecord.scheduled_for <= now,
                    )
                    .order_by(PostRecord.scheduled_for)
                ).all()
            )
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Post store unavailable: {e}")
