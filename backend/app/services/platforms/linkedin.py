"""LinkedIn adapter: authorization code flow, OpenID userinfo, UGC posts."""

import logging
from urllib.parse import urlencode

from app.errors import ProfileFetchFailed, PublishFailed, TokenExchangeFailed

from .base import AccountProfile, PlatformAdapter, PublishedPost, TokenSet

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_IMAGE = "https://cdn-icons-png.flaticon.com/512/174/174857.png"


class LinkedInAdapter(PlatformAdapter):
    platform = "linkedin"
    scopes = ["openid", "profile", "email", "w_member_social"]
    max_length = 3000

    AUTHORIZATION_URL = "https://www.linkedin.com/oauth/v2/authorization"
    TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
    USERINFO_URL = "https://api.linkedin.com/v2/userinfo"
    UGC_POSTS_URL = "https://api.linkedin.com/v2/ugcPosts"

    visibility = "PUBLIC"

    @property
    def is_configured(self) -> bool:
        return bool(
            self.settings.linkedin_client_id and self.settings.linkedin_client_secret
        )

    def build_auth_url(self, state: str, code_challenge: str | None = None) -> str:
        params = {
            "response_type": "code",
            "client_id": self.settings.linkedin_client_id,
            "redirect_uri": self.redirect_uri,
            "state": state,
            "scope": " ".join(self.scopes),
        }
        return f"{self.AUTHORIZATION_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, code_verifier: str | None = None) -> TokenSet:
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
                "client_id": self.settings.linkedin_client_id,
                "client_secret": self.settings.linkedin_client_secret,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        if not data.get("access_token"):
            raise TokenExchangeFailed("No access token in response", platform=self.platform)
        return TokenSet.from_response(data, self.scopes)

    async def _userinfo(self, access_token: str) -> dict:
        data, _ = await self._request(
            "GET",
            self.USERINFO_URL,
            ProfileFetchFailed,
            "get LinkedIn profile",
            headers={
                "Authorization": f"Bearer {access_token}",
                "cache-control": "no-cache",
            },
        )
        return data

    async def fetch_profile(self, tokens: TokenSet) -> AccountProfile:
        info = await self._userinfo(tokens.access_token)
        if not info.get("sub"):
            raise ProfileFetchFailed("LinkedIn returned no member id", platform=self.platform)
        name = info.get("name") or ""
        return AccountProfile(
            provider_id=info["sub"],
            username=name.lower().replace(" ", ".") if name else "linkedin_user",
            display_name=name,
            profile_image=info.get("picture") or DEFAULT_PROFILE_IMAGE,
            extra={
                "first_name": info.get("given_name", ""),
                "last_name": info.get("family_name", ""),
                "email": info.get("email", ""),
            },
        )

    async def verify_token(self, access_token: str, profile: AccountProfile) -> None:
        await self._userinfo(access_token)

    async def publish(
        self,
        access_token: str,
        profile: AccountProfile,
        content: str,
        media_url: str | None = None,
    ) -> PublishedPost:
        payload = {
            "author": f"urn:li:person:{profile.provider_id}",
            "lifecycleState": "PUBLISHED",
            "specificContent": {
                "com.linkedin.ugc.ShareContent": {
                    "shareCommentary": {"text": content},
                    "shareMediaCategory": "NONE",
                }
            },
            "visibility": {
                "com.linkedin.ugc.MemberNetworkVisibility": self.visibility
            },
        }
        data, response = await self._request(
            "POST",
            self.UGC_POSTS_URL,
            PublishFailed,
            "post to LinkedIn",
            json=payload,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
                "X-Restli-Protocol-Version": "2.0.0",
            },
        )
        post_id = data.get("id") or response.headers.get("x-restli-id")
        if not post_id:
            raise PublishFailed("LinkedIn returned no post id", platform=self.platform)

        logger.info(f"Published LinkedIn post {post_id} for member {profile.provider_id}")
        return PublishedPost(
            post_id=post_id,
            post_url=f"https://www.linkedin.com/feed/update/{post_id}",
        )
