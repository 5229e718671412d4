"""Error taxonomy shared by the adapters, the controllers and the API layer."""

from typing import Any


class SocialLinkError(Exception):
    """Base exception for linking and publishing failures."""

    code = "INTERNAL_ERROR"
    status_code = 500
    # Client surface of the link flow that failed, when known
    origin: str | None = None

    def __init__(
        self,
        message: str,
        platform: str | None = None,
        raw_error: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.platform = platform
        self.raw_error = raw_error


class MissingParameter(SocialLinkError):
    code = "MISSING_PARAMETER"
    status_code = 400


class ValidationError(SocialLinkError):
    code = "VALIDATION_ERROR"
    status_code = 400


class NotConnected(SocialLinkError):
    code = "NOT_CONNECTED"
    status_code = 401


class SessionExpired(SocialLinkError):
    code = "SESSION_EXPIRED"
    status_code = 404


class TokenExchangeFailed(SocialLinkError):
    code = "TOKEN_EXCHANGE_FAILED"
    status_code = 502


class ProfileFetchFailed(SocialLinkError):
    code = "PROFILE_FETCH_FAILED"
    status_code = 502


class AuthExpired(SocialLinkError):
    """Token rejected by the platform and not refreshable."""

    code = "AUTH_EXPIRED"
    status_code = 401


class RateLimited(SocialLinkError):
    code = "RATE_LIMITED"
    status_code = 429

    def __init__(
        self,
        message: str,
        platform: str | None = None,
        retry_after: int | None = None,
        raw_error: Any = None,
    ) -> None:
        super().__init__(message, platform=platform, raw_error=raw_error)
        self.retry_after = retry_after


class PublishFailed(SocialLinkError):
    code = "PUBLISH_FAILED"
    status_code = 500


class StoreUnavailable(SocialLinkError):
    code = "STORE_UNAVAILABLE"
    status_code = 503
