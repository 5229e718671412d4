"""
Base class for social platform adapters.

An adapter wraps one platform's OAuth dialect and the handful of API calls
the link and publish flows need. Adapters hold no per-user state: tokens are
passed in and returned, and persistence is the caller's job.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from pydantic import BaseModel, Field

from app.config import Settings
from app.errors import (
    AuthExpired,
    RateLimited,
    SocialLinkError,
)


class TokenSet(BaseModel):
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    scopes: list[str] = Field(default_factory=list)

    @classmethod
    def from_response(cls, data: dict, default_scopes: list[str]) -> "TokenSet":
        """Build a token set from a standard OAuth 2.0 token response."""
        expires_at = None
        if data.get("expires_in"):
            expires_at = datetime.now(UTC) + timedelta(seconds=int(data["expires_in"]))
        scope = data.get("scope")
        if isinstance(scope, str) and scope:
            scopes = scope.replace(",", " ").split()
        else:
            scopes = list(default_scopes)
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=expires_at,
            scopes=scopes,
        )


class AccountProfile(BaseModel):
    provider_id: str
    username: str = ""
    display_name: str = ""
    profile_image: str = ""
    extra: dict[str, Any] = Field(default_factory=dict)
    # Page-scoped token that replaces the user token (Facebook, Instagram)
    access_token: str | None = None


class PublishedPost(BaseModel):
    post_id: str
    post_url: str | None = None


class PlatformAdapter(ABC):
    """
    Abstract base class for platform adapters.

    Subclasses set the class attributes describing the platform and implement
    the abstract methods. Failures are raised as the errors in app.errors.
    """

    platform: str = ""
    scopes: list[str] = []
    max_length: int = 0
    uses_pkce: bool = False
    supports_refresh: bool = False
    supports_media: bool = False
    requires_media: bool = False

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.transport = transport
        self.redirect_uri = settings.callback_url(self.platform)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.http_timeout_seconds,
            transport=self.transport,
        )

    # -------------------------------------------------------------------------
    # Response handling
    # -------------------------------------------------------------------------

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict):
                return error.get("message") or str(error)
            return (
                data.get("error_description")
                or data.get("message")
                or data.get("detail")
                or (error if isinstance(error, str) else None)
                or f"HTTP {response.status_code}"
            )
        return f"HTTP {response.status_code}"

    def _check(
        self,
        response: httpx.Response,
        failure: type[SocialLinkError],
        action: str,
        classify: bool = True,
    ) -> dict:
        """Map a platform response to JSON or raise the matching error.

        With classify off every error status maps to ``failure``, which is
        what the token endpoints need.
        """
        if classify and response.status_code == 401:
            raise AuthExpired(
                f"{self.platform} rejected the access token",
                platform=self.platform,
            )
        if classify and response.status_code == 429:
            retry_after = response.headers.get("retry-after")
            raise RateLimited(
                f"{self.platform} rate limit exceeded",
                platform=self.platform,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if response.status_code >= 400:
            message = self._error_message(response)
            raise failure(
                f"Failed to {action}: {message}",
                platform=self.platform,
                raw_error=message,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            raise failure(
                f"Failed to {action}: invalid response body",
                platform=self.platform,
            )

    async def _send(
        self,
        method: str,
        url: str,
        failure: type[SocialLinkError],
        action: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Issue one request. Timeouts and connection errors raise ``failure``."""
        try:
            async with self._client() as client:
                return await client.request(method, url, **kwargs)
        except httpx.TimeoutException:
            raise failure(f"Failed to {action}: request timed out", platform=self.platform)
        except httpx.TransportError as e:
            raise failure(f"Failed to {action}: {e}", platform=self.platform)

    async def _request(
        self,
        method: str,
        url: str,
        failure: type[SocialLinkError],
        action: str,
        classify: bool = True,
        **kwargs: Any,
    ) -> tuple[dict, httpx.Response]:
        response = await self._send(method, url, failure, action, **kwargs)
        return self._check(response, failure, action, classify), response

    # -------------------------------------------------------------------------
    # Capability set
    # -------------------------------------------------------------------------

    @property
    def is_configured(self) -> bool:
        return True

    @abstractmethod
    def build_auth_url(self, state: str, code_challenge: str | None = None) -> str:
        """Return the provider's authorization URL for this state."""

    @abstractmethod
    async def exchange_code(self, code: str, code_verifier: str | None = None) -> TokenSet:
        """Exchange an authorization code for tokens."""

    @abstractmethod
    async def fetch_profile(self, tokens: TokenSet) -> AccountProfile:
        """Fetch the linked account's identity and display metadata."""

    @abstractmethod
    async def publish(
        self,
        access_token: str,
        profile: AccountProfile,
        content: str,
        media_url: str | None = None,
    ) -> PublishedPost:
        """Publish content as the linked account."""

    async def refresh(self, refresh_token: str) -> TokenSet:
        raise AuthExpired(
            f"{self.platform} tokens cannot be refreshed; reconnect the account",
            platform=self.platform,
        )

    async def verify_token(self, access_token: str, profile: AccountProfile) -> None:
        """Cheap live token check. Raises AuthExpired when the token is rejected."""

    def validate_content(self, content: str, media_url: str | None) -> list[str]:
        """Return a list of validation problems, empty when publishable."""
        errors = []
        text = (content or "").strip()
        if media_url and not self.supports_media:
            errors.append(f"{self.platform} does not support media attachments")
        if self.requires_media and not media_url:
            errors.append(f"{self.platform} requires an image")
        if not text and not (media_url and self.supports_media):
            errors.append("Content cannot be empty")
        if self.max_length and len(content or "") > self.max_length:
            errors.append(
                f"Post cannot exceed {self.max_length} characters on {self.platform}"
            )
        return errors
