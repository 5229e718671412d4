"""Background scheduler: due scheduled posts and expired OAuth leftovers."""

import asyncio
import logging
from datetime import datetime

from sqlmodel import Session

from app.config import Settings
from app.database import engine
from app.errors import SocialLinkError
from app.models.common import Platform
from app.services.credentials import CredentialStore
from app.services.platforms import PlatformAdapter
from app.services.posts import PostRecordStore
from app.services.publisher import PublishController

logger = logging.getLogger(__name__)


async def process_due_posts(
    db: Session,
    adapters: dict[Platform, PlatformAdapter],
    settings: Settings,
    now: datetime | None = None,
) -> int:
    """Publish every scheduled post whose time has come. Returns how many ran.

    Scheduled posts are rows, so posts that came due while the process was
    down are picked up on the first run after startup.
    """
    due = PostRecordStore(db).due_scheduled(now)
    if not due:
        return 0

    publisher = PublishController(db, adapters, settings)
    for record in due:
        try:
            result = await publisher.run_scheduled(record)
        except SocialLinkError as e:
            logger.error(f"Scheduled post {record.id} could not be processed: {e.message}")
            continue
        logger.info(f"Scheduled {record.platform} post {record.id} -> {result.status}")
    return len(due)


def sweep_expired_auth(db: Session, settings: Settings, now: datetime | None = None) -> int:
    swept = CredentialStore(db, settings).sweep_expired(now)
    if swept:
        logger.info(f"Swept {swept} expired pending authorizations or sessions")
    return swept


async def scheduler_task(adapters: dict[Platform, PlatformAdapter], settings: Settings):
    """Runs until cancelled, waking every scheduler_interval_seconds."""
    while True:
        try:
            await asyncio.sleep(settings.scheduler_interval_seconds)
            with Session(engine) as db:
                await process_due_posts(db, adapters, settings)
                sweep_expired_auth(db, settings)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduler run failed")
