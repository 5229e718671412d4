from app.config import Settings
from app.errors import ValidationError
from app.models.common import Platform

from .base import AccountProfile, PlatformAdapter, PublishedPost, TokenSet
from .facebook import FacebookAdapter, InstagramAdapter
from .linkedin import LinkedInAdapter
from .twitter import TwitterAdapter

ADAPTER_CLASSES: dict[Platform, type[PlatformAdapter]] = {
    Platform.TWITTER: TwitterAdapter,
    Platform.LINKEDIN: LinkedInAdapter,
    Platform.FACEBOOK: FacebookAdapter,
    Platform.INSTAGRAM: InstagramAdapter,
}


def get_adapter(adapters: dict[Platform, PlatformAdapter], platform: str) -> PlatformAdapter:
    try:
        return adapters[Platform(platform)]
    except (ValueError, KeyError):
        raise ValidationError(f"Unsupported platform: {platform}")


def build_adapters(settings: Settings, transport=None) -> dict[Platform, PlatformAdapter]:
    """One adapter per supported platform, sharing the given settings."""
    return {
        platform: cls(settings, transport=transport)
        for platform, cls in ADAPTER_CLASSES.items()
    }


__all__ = [
    "ADAPTER_CLASSES",
    "AccountProfile",
    "FacebookAdapter",
    "InstagramAdapter",
    "LinkedInAdapter",
    "PlatformAdapter",
    "PublishedPost",
    "TokenSet",
    "TwitterAdapter",
    "build_adapters",
    "get_adapter",
]
