"""Connection management, publishing and post history, per platform."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from app.api.deps import get_link_flow, get_platform, get_publisher
from app.models.common import Platform
from app.models.post import PostRecord
from app.services.link_flow import CredentialSummary, LinkFlowController
from app.services.publisher import PublishController

router = APIRouter(tags=["social"])


# --- Pydantic models ---


class UserRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str | None = Field(default=None, alias="userId")


class PublishRequest(UserRequest):
    content: str | None = None
    media_url: str | None = Field(default=None, alias="mediaUrl")


class ScheduleRequest(PublishRequest):
    scheduled_for: datetime = Field(alias="scheduledFor")


class AccountResponse(BaseModel):
    user_id: str
    platform: str
    provider_id: str
    username: str
    name: str
    profile_image: str
    connected_at: datetime


class PostResponse(BaseModel):
    id: int
    platform: str
    provider_post_id: str | None
    content: str
    media_url: str | None
    post_url: str | None
    status: str
    posted_at: datetime
    scheduled_for: datetime | None
    error: str | None
    account_username: str
    account_name: str


def _account(summary: CredentialSummary) -> AccountResponse:
    return AccountResponse(
        user_id=summary.user_id,
        platform=summary.platform,
        provider_id=summary.provider_id,
        username=summary.username,
        name=summary.name,
        profile_image=summary.profile_image,
        connected_at=summary.connected_at,
    )


def _post(record: PostRecord) -> PostResponse:
    return PostResponse(
        id=record.id,
        platform=record.platform,
        provider_post_id=record.provider_post_id,
        content=record.content,
        media_url=record.media_url,
        post_url=record.post_url,
        status=record.status,
        posted_at=record.posted_at,
        scheduled_for=record.scheduled_for,
        error=record.error,
        account_username=record.account_username,
        account_name=record.account_name,
    )


# --- Across platforms ---


@router.get("/accounts")
async def list_accounts(
    user_id: str | None = Query(default=None, alias="userId"),
    platform: str | None = Query(default=None),
    flow: LinkFlowController = Depends(get_link_flow),
):
    """Linked accounts of a user on every platform, or on one."""
    summaries = flow.list_accounts(user_id, platform)
    accounts = [_account(s).model_dump(mode="json") for s in summaries]
    return {"success": True, "accounts": accounts, "count": len(accounts)}


@router.get("/posts")
async def list_all_posts(
    user_id: str | None = Query(default=None, alias="userId"),
    limit: int | None = Query(default=None),
    publisher: PublishController = Depends(get_publisher),
):
    records = publisher.list_posts(user_id, None, limit)
    posts = [_post(r).model_dump(mode="json") for r in records]
    return {"success": True, "posts": posts, "count": len(posts)}


# --- Connection ---


@router.get("/{platform}/check")
async def check_connection(
    platform: Platform = Depends(get_platform),
    user_id: str | None = Query(default=None, alias="userId"),
    flow: LinkFlowController = Depends(get_link_flow),
):
    """Report whether the user has a working link to the platform."""
    status = await flow.check_link(user_id, platform.value)
    body: dict = {"success": True, "connected": status.connected}
    if status.account:
        body["account"] = _account(status.account).model_dump(mode="json")
        body["tokenExpiresAt"] = (
            status.token_expires_at.isoformat() if status.token_expires_at else None
        )
    return body


@router.get("/{platform}/verify-session")
async def verify_session(
    platform: Platform = Depends(get_platform),
    session_id: str | None = Query(default=None),
    flow: LinkFlowController = Depends(get_link_flow),
):
    """Exchange a one-time mobile session handle for the linked account."""
    summary = flow.resolve_transient_session(session_id, platform.value)
    return {"success": True, "account": _account(summary).model_dump(mode="json")}


@router.post("/{platform}/disconnect")
async def disconnect(
    body: UserRequest,
    platform: Platform = Depends(get_platform),
    flow: LinkFlowController = Depends(get_link_flow),
):
    deleted = flow.unlink(body.user_id, platform.value)
    return {
        "success": True,
        "message": f"{platform.value} disconnected",
        "deletedCount": deleted,
    }


# --- Publishing ---


@router.post("/{platform}/post")
async def publish_post(
    body: PublishRequest,
    platform: Platform = Depends(get_platform),
    publisher: PublishController = Depends(get_publisher),
):
    """Publish immediately and record the post."""
    result = await publisher.publish(
        body.user_id, platform.value, body.content, body.media_url
    )
    return {"success": True, "postId": result.post_id, "postUrl": result.post_url}


@router.post("/{platform}/schedule")
async def schedule_post(
    body: ScheduleRequest,
    platform: Platform = Depends(get_platform),
    publisher: PublishController = Depends(get_publisher),
):
    record = publisher.schedule_publish(
        body.user_id,
        platform.value,
        body.content,
        body.media_url,
        body.scheduled_for,
    )
    return {"success": True, "post": _post(record).model_dump(mode="json")}


@router.get("/{platform}/posts")
async def list_posts(
    platform: Platform = Depends(get_platform),
    user_id: str | None = Query(default=None, alias="userId"),
    limit: int | None = Query(default=None),
    publisher: PublishController = Depends(get_publisher),
):
    records = publisher.list_posts(user_id, platform.value, limit)
    posts = [_post(r).model_dump(mode="json") for r in records]
    return {"success": True, "posts": posts, "count": len(posts)}
