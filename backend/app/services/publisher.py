"""
Publishing: validate, look up the credential, call the platform, record it.

The external post and the local record are not transactional. Once the
platform has accepted a post, a failure to write the PostRecord is logged
and the publish is still reported as successful.
"""

import logging
from datetime import UTC, datetime

from pydantic import BaseModel
from sqlmodel import Session

from app.config import Settings
from app.errors import (
    AuthExpired,
    MissingParameter,
    NotConnected,
    PublishFailed,
    RateLimited,
    SocialLinkError,
    StoreUnavailable,
    ValidationError,
)
from app.models.common import Platform, PostStatus
from app.models.post import PostRecord
from app.models.social import Credential
from app.services.credentials import CredentialStore
from app.services.platforms import PlatformAdapter, PublishedPost, get_adapter
from app.services.posts import PostRecordStore
from app.services.token_refresh import run_with_refresh

logger = logging.getLogger(__name__)


class PublishResult(BaseModel):
    post_id: str
    post_url: str | None = None
    record_id: int | None = None


def _as_utc(when: datetime) -> datetime:
    """Aware UTC. Naive input is taken to be UTC already."""
    if when.tzinfo is None:
        return when.replace(tzinfo=UTC)
    return when.astimezone(UTC)


class PublishController:
    def __init__(
        self,
        db: Session,
        adapters: dict[Platform, PlatformAdapter],
        settings: Settings,
    ):
        self.credentials = CredentialStore(db, settings)
        self.posts = PostRecordStore(db)
        self.adapters = adapters
        self.settings = settings

    # --- Helpers ---

    def _prepare(
        self,
        user_id: str | None,
        platform: str,
        content: str | None,
        media_url: str | None,
    ) -> tuple[PlatformAdapter, Credential]:
        if not user_id or not user_id.strip():
            raise MissingParameter("userId required")
        adapter = get_adapter(self.adapters, platform)

        errors = adapter.validate_content(content or "", media_url)
        if errors:
            raise ValidationError("; ".join(errors), platform=adapter.platform)

        credential = self.credentials.get(user_id.strip(), adapter.platform)
        if not credential or not credential.is_linked:
            raise NotConnected(
                f"{adapter.platform} account not connected", platform=adapter.platform
            )
        return adapter, credential

    async def _send(
        self,
        adapter: PlatformAdapter,
        credential: Credential,
        content: str,
        media_url: str | None,
    ) -> PublishedPost:
        profile = self.credentials.profile(credential)
        try:
            return await run_with_refresh(
                self.credentials,
                adapter,
                credential,
                lambda token: adapter.publish(token, profile, content, media_url),
            )
        except (AuthExpired, RateLimited, PublishFailed):
            raise
        except SocialLinkError as e:
            raise PublishFailed(e.message, platform=adapter.platform) from e

    @staticmethod
    def _snapshot(credential: Credential) -> dict:
        return {
            "account_id": credential.provider_id,
            "account_username": credential.username,
            "account_name": credential.display_name,
            "account_image": credential.profile_image,
        }

    # --- Operations ---

    async def publish(
        self,
        user_id: str | None,
        platform: str,
        content: str | None,
        media_url: str | None = None,
    ) -> PublishResult:
        adapter, credential = self._prepare(user_id, platform, content, media_url)
        published = await self._send(adapter, credential, content or "", media_url)

        record = PostRecord(
            user_id=credential.user_id,
            platform=adapter.platform,
            provider_post_id=published.post_id,
            content=content or "",
            media_url=media_url,
            post_url=published.post_url,
            status=PostStatus.POSTED.value,
            **self._snapshot(credential),
        )
        record_id = None
        try:
            record_id = self.posts.add(record).id
        except StoreUnavailable as e:
            # The post is live; only the local history is missing
            logger.error(
                f"Published {adapter.platform} post {published.post_id} but could not "
                f"record it: {e.message}"
            )
        return PublishResult(
            post_id=published.post_id,
            post_url=published.post_url,
            record_id=record_id,
        )

    def schedule_publish(
        self,
        user_id: str | None,
        platform: str,
        content: str | None,
        media_url: str | None,
        when: datetime,
    ) -> PostRecord:
        adapter, credential = self._prepare(user_id, platform, content, media_url)
        when = _as_utc(when)
        if when <= datetime.now(UTC):
            raise ValidationError("Scheduled time must be in the future", platform=adapter.platform)

        record = PostRecord(
            user_id=credential.user_id,
            platform=adapter.platform,
            content=content or "",
            media_url=media_url,
            status=PostStatus.SCHEDULED.value,
            scheduled_for=when,
            posted_at=when,
            **self._snapshot(credential),
        )
        record = self.posts.add(record)
        logger.info(f"Scheduled {adapter.platform} post {record.id} for {when.isoformat()}")
        return record

    async def run_scheduled(self, record: PostRecord) -> PostRecord:
        """Publish a due scheduled record and move it to posted or failed.

        The record is claimed as ``publishing`` before the platform call. If
        the final status write fails it stays there, out of the due queue, so
        the scheduler never publishes it a second time.
        """
        if record.status != PostStatus.SCHEDULED.value:
            return record

        record_id = record.id
        adapter = get_adapter(self.adapters, record.platform)
        credential = self.credentials.get(record.user_id, record.platform)
        if not credential or not credential.is_linked:
            return self.posts.mark_failed(record, f"{record.platform} account not connected")

        # Raises StoreUnavailable before anything is sent
        record = self.posts.mark_publishing(record)

        try:
            published = await self._send(adapter, credential, record.content, record.media_url)
        except SocialLinkError as e:
            logger.warning(f"Scheduled {record.platform} post {record_id} failed: {e.message}")
            return self.posts.mark_failed(record, e.message)

        try:
            return self.posts.mark_posted(record, published.post_id, published.post_url)
        except StoreUnavailable as e:
            logger.error(
                f"Scheduled post {record_id} published as {published.post_id} but "
                f"could not be updated, left as publishing: {e.message}"
            )
            return record

    def list_posts(
        self, user_id: str | None, platform: str | None, limit: int | None = None
    ) -> list[PostRecord]:
        """Post history of a user, for one platform or all of them."""
        if not user_id or not user_id.strip():
            raise MissingParameter("userId required")
        if platform:
            platform = get_adapter(self.adapters, platform).platform
        if not limit or limit < 1:
            limit = self.settings.post_page_size
        limit = min(limit, self.settings.max_post_page_size)
        return self.posts.recent(user_id.strip(), platform, limit)
