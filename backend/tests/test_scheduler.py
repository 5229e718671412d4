from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from app.config import Settings
from app.models.common import Platform, PostStatus
from app.models.post import PostRecord
from app.models.social import Credential
from app.services.platforms import PublishedPost
from app.tasks.scheduler import process_due_posts, sweep_expired_auth


def _scheduled(session: Session, when: datetime, platform: str = "twitter") -> PostRecord:
    record = PostRecord(
        user_id="user-1",
        platform=platform,
        content="scheduled hello",
        status=PostStatus.SCHEDULED.value,
        scheduled_for=when,
        posted_at=when,
    )
    session.add(record)
    session.commit()
    session.refresh(record)
    return record


@pytest.mark.asyncio
async def test_process_due_posts(session, adapters, test_settings: Settings, make_credential):
    make_credential(platform="twitter")
    now = datetime.now(UTC)
    due = _scheduled(session, now - timedelta(minutes=1))
    later = _scheduled(session, now + timedelta(hours=1))
    adapter = adapters[Platform.TWITTER]

    with patch.object(
        adapter, "publish", AsyncMock(return_value=PublishedPost(post_id="1900"))
    ) as publish:
        count = await process_due_posts(session, adapters, test_settings, now=now)

    assert count == 1
    publish.assert_awaited_once()
    session.refresh(due)
    session.refresh(later)
    assert due.status == PostStatus.POSTED.value
    assert due.provider_post_id == "1900"
    assert later.status == PostStatus.SCHEDULED.value


@pytest.mark.asyncio
async def test_process_due_posts_failure_is_recorded(
    session, adapters, test_settings: Settings
):
    now = datetime.now(UTC)
    due = _scheduled(session, now - timedelta(minutes=1))

    count = await process_due_posts(session, adapters, test_settings, now=now)

    assert count == 1
    session.refresh(due)
    assert due.status == PostStatus.FAILED.value


@pytest.mark.asyncio
async def test_failed_status_write_is_not_published_again(
    session, adapters, test_settings: Settings, make_credential
):
    make_credential(platform="twitter")
    now = datetime.now(UTC)
    due = _scheduled(session, now - timedelta(minutes=1))
    adapter = adapters[Platform.TWITTER]

    real_commit = session.commit
    commits = []

    def commit_failing_after_publish():
        commits.append(1)
        # First commit claims the record, the second records the outcome
        if len(commits) == 2:
            raise OperationalError("UPDATE post_records", {}, Exception("database is locked"))
        return real_commit()

    with patch.object(
        adapter, "publish", AsyncMock(return_value=PublishedPost(post_id="1900"))
    ) as publish:
        with patch.object(session, "commit", side_effect=commit_failing_after_publish):
            await process_due_posts(session, adapters, test_settings, now=now)
        again = await process_due_posts(
            session, adapters, test_settings, now=now + timedelta(minutes=1)
        )

    assert publish.await_count == 1
    assert again == 0
    session.refresh(due)
    assert due.status == PostStatus.PUBLISHING.value


@pytest.mark.asyncio
async def test_process_due_posts_nothing_due(session, adapters, test_settings: Settings):
    assert await process_due_posts(session, adapters, test_settings) == 0


def test_sweep_expired_auth(session, test_settings: Settings, make_credential):
    stale = datetime.now(UTC) - timedelta(minutes=test_settings.pending_auth_ttl_minutes + 1)
    session.add(
        Credential(
            user_id="user-2",
            platform="linkedin",
            pending_state="abandoned",
            pending_created_at=stale,
        )
    )
    linked = make_credential(platform="twitter")
    linked.pending_state = "retry"
    linked.pending_created_at = stale
    session.add(linked)
    session.commit()

    assert sweep_expired_auth(session, test_settings) == 2

    rows = session.exec(select(Credential)).all()
    assert [(r.user_id, r.platform) for r in rows] == [("user-1", "twitter")]
    assert rows[0].pending_state is None
    assert rows[0].is_linked
