from app.models.common import LoginOrigin, Platform, PostStatus
from app.models.post import PostRecord
from app.models.social import Credential

__all__ = [
    "Credential",
    "LoginOrigin",
    "Platform",
    "PostRecord",
    "PostStatus",
]
