"""
Twitter/X API v2 adapter.

OAuth 2.0 authorization code flow with PKCE, bearer tokens and refresh
tokens (``offline.access``).
"""

import base64
import logging
from urllib.parse import urlencode

from app.errors import AuthExpired, ProfileFetchFailed, PublishFailed, TokenExchangeFailed

from .base import AccountProfile, PlatformAdapter, PublishedPost, TokenSet

logger = logging.getLogger(__name__)


class TwitterAdapter(PlatformAdapter):
    platform = "twitter"
    scopes = ["tweet.read", "tweet.write", "users.read", "offline.access"]
    max_length = 280
    uses_pkce = True
    supports_refresh = True

    AUTHORIZATION_URL = "https://twitter.com/i/oauth2/authorize"
    TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
    API_BASE = "https://api.twitter.com/2"

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.twitter_client_id and self.settings.twitter_client_secret)

    def _basic_auth(self) -> dict:
        credentials = (
            f"{self.settings.twitter_client_id}:{self.settings.twitter_client_secret}"
        )
        return {
            "Content-Type": "application/x-www-form-urlencoded",
            "Authorization": f"Basic {base64.b64encode(credentials.encode()).decode()}",
        }

    def build_auth_url(self, state: str, code_challenge: str | None = None) -> str:
        params = {
            "response_type": "code",
            "client_id": self.settings.twitter_client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.scopes),
            "state": state,
            "code_challenge": code_challenge or "",
            "code_challenge_method": "S256",
        }
        return f"{self.AUTHORIZATION_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, code_verifier: str | None = None) -> TokenSet:
        if not code_verifier:
            raise TokenExchangeFailed("Missing PKCE verifier", platform=self.platform)
        data, _ = await self._request(
            "POST",
            self.TOKEN_URL,
            TokenExchangeFailed,
            "exchange code",
            classify=False,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
                "client_id": self.settings.twitter_client_id,
                "code_verifier": code_verifier,
            },
            headers=self._basic_auth(),
        )
        if not data.get("access_token"):
            raise TokenExchangeFailed("No access token in response", platform=self.platform)
        return TokenSet.from_response(data, self.scopes)

    async def refresh(self, refresh_token: str) -> TokenSet:
        """Refresh an expired access token.

        Only a rejected grant (400/401) means the user must reconnect.
        Timeouts and server errors raise TokenExchangeFailed, 429 RateLimited.
        """
        response = await self._send(
            "POST",
            self.TOKEN_URL,
            TokenExchangeFailed,
            "refresh token",
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.settings.twitter_client_id,
            },
            headers=self._basic_auth(),
        )
        if response.status_code in (400, 401):
            raise AuthExpired(
                f"Twitter refresh failed, reconnect the account "
                f"({self._error_message(response)})",
                platform=self.platform,
            )
        data = self._check(response, TokenExchangeFailed, "refresh token")
        if not data.get("access_token"):
            raise AuthExpired("Twitter refresh returned no token", platform=self.platform)
        tokens = TokenSet.from_response(data, self.scopes)
        # Twitter rotates refresh tokens, but keep the old one if none came back
        if not tokens.refresh_token:
            tokens.refresh_token = refresh_token
        return tokens

    async def _me(self, access_token: str, failure) -> dict:
        data, _ = await self._request(
            "GET",
            f"{self.API_BASE}/users/me",
            failure,
            "get user profile",
            params={"user.fields": "id,name,username,profile_image_url"},
            headers={"Authorization": f"Bearer {access_token}"},
        )
        return data.get("data") or {}

    async def fetch_profile(self, tokens: TokenSet) -> AccountProfile:
        user = await self._me(tokens.access_token, ProfileFetchFailed)
        if not user.get("id"):
            raise ProfileFetchFailed("Twitter returned no user id", platform=self.platform)
        return AccountProfile(
            provider_id=user["id"],
            username=user.get("username", ""),
            display_name=user.get("name", ""),
            profile_image=user.get("profile_image_url", ""),
        )

    async def verify_token(self, access_token: str, profile: AccountProfile) -> None:
        await self._me(access_token, ProfileFetchFailed)

    async def publish(
        self,
        access_token: str,
        profile: AccountProfile,
        content: str,
        media_url: str | None = None,
    ) -> PublishedPost:
        data, _ = await self._request(
            "POST",
            f"{self.API_BASE}/tweets",
            PublishFailed,
            "post tweet",
            json={"text": content},
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
        )
        tweet_id = (data.get("data") or {}).get("id")
        if not tweet_id:
            raise PublishFailed("Twitter returned no tweet id", platform=self.platform)

        logger.info(f"Published tweet {tweet_id} for @{profile.username}")
        return PublishedPost(
            post_id=tweet_id,
            post_url=f"https://twitter.com/{profile.username}/status/{tweet_id}",
        )
