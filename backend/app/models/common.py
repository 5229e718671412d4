from enum import Enum


class Platform(str, Enum):
    TWITTER = "twitter"
    LINKEDIN = "linkedin"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"


class LoginOrigin(str, Enum):
    WEB = "web"
    ANDROID = "android"
    IOS = "ios"

    @property
    def is_mobile(self) -> bool:
        return self is not LoginOrigin.WEB


class PostStatus(str, Enum):
    SCHEDULED = "scheduled"
    PUBLISHING = "publishing"
    POSTED = "posted"
    FAILED = "failed"
