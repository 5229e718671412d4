from functools import lru_cache

from fastapi import Depends, HTTPException
from sqlmodel import Session

from app.config import Settings, settings
from app.database import get_session
from app.models.common import Platform
from app.services.link_flow import LinkFlowController
from app.services.platforms import PlatformAdapter, build_adapters
from app.services.publisher import PublishController


def get_settings() -> Settings:
    return settings


@lru_cache
def get_adapters() -> dict[Platform, PlatformAdapter]:
    return build_adapters(settings)


def get_platform(platform: str) -> Platform:
    try:
        return Platform(platform)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unsupported platform: {platform}")


def get_link_flow(
    session: Session = Depends(get_session),
    adapters: dict[Platform, PlatformAdapter] = Depends(get_adapters),
    app_settings: Settings = Depends(get_settings),
) -> LinkFlowController:
    return LinkFlowController(session, adapters, app_settings)


def get_publisher(
    session: Session = Depends(get_session),
    adapters: dict[Platform, PlatformAdapter] = Depends(get_adapters),
    app_settings: Settings = Depends(get_settings),
) -> PublishController:
    return PublishController(session, adapters, app_settings)
