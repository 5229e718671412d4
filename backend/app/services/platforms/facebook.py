"""
Facebook Pages adapter.

The user authorizes the app, then the pages they administer are enumerated
and the first page is linked using its page access token. Page tokens
derived from a long-lived user token do not expire.
"""

import logging
from urllib.parse import urlencode

import httpx

from app.errors import (
    AuthExpired,
    ProfileFetchFailed,
    PublishFailed,
    RateLimited,
    SocialLinkError,
    TokenExchangeFailed,
)

from .base import AccountProfile, PlatformAdapter, PublishedPost, TokenSet

logger = logging.getLogger(__name__)

# Graph API error codes
EXPIRED_TOKEN_CODES = {190, 102}
THROTTLING_CODES = {4, 17, 32, 613}


class FacebookAdapter(PlatformAdapter):
    platform = "facebook"
    scopes = [
        "pages_read_engagement",
        "pages_manage_posts",
        "pages_show_list",
        "public_profile",
        "email",
    ]
    max_length = 63206
    supports_media = True

    @property
    def graph_url(self) -> str:
        return f"https://graph.facebook.com/{self.settings.graph_api_version}"

    @property
    def dialog_url(self) -> str:
        return f"https://www.facebook.com/{self.settings.graph_api_version}/dialog/oauth"

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.facebook_app_id and self.settings.facebook_app_secret)

    def _check(
        self,
        response: httpx.Response,
        failure: type[SocialLinkError],
        action: str,
        classify: bool = True,
    ) -> dict:
        # Graph reports expired tokens and throttling as HTTP 400 with an error code
        if classify and response.status_code == 400:
            try:
                error = response.json().get("error") or {}
            except (ValueError, AttributeError):
                error = {}
            if isinstance(error, dict):
                if error.get("code") in EXPIRED_TOKEN_CODES:
                    raise AuthExpired(
                        f"{self.platform} access token expired: {error.get('message', '')}",
                        platform=self.platform,
                    )
                if error.get("code") in THROTTLING_CODES:
                    raise RateLimited(
                        f"{self.platform} rate limit exceeded",
                        platform=self.platform,
                    )
        return super()._check(response, failure, action, classify)

    def build_auth_url(self, state: str, code_challenge: str | None = None) -> str:
        params = {
            "client_id": self.settings.facebook_app_id,
            "redirect_uri": self.redirect_uri,
            "state": state,
            "scope": ",".join(self.scopes),
            "response_type": "code",
        }
        return f"{self.dialog_url}?{urlencode(params)}"

    async def exchange_code(self, code: str, code_verifier: str | None = None) -> TokenSet:
        data, _ = await self._request(
            "GET",
            f"{self.graph_url}/oauth/access_token",
            TokenExchangeFailed,
            "exchange code",
            classify=False,
            params={
                "client_id": self.settings.facebook_app_id,
                "client_secret": self.settings.facebook_app_secret,
                "redirect_uri": self.redirect_uri,
                "code": code,
            },
        )
        if not data.get("access_token"):
            raise TokenExchangeFailed("Failed to get access token", platform=self.platform)

        try:
            long_lived, _ = await self._request(
                "GET",
                f"{self.graph_url}/oauth/access_token",
                TokenExchangeFailed,
                "get long-lived token",
                classify=False,
                params={
                    "grant_type": "fb_exchange_token",
                    "client_id": self.settings.facebook_app_id,
                    "client_secret": self.settings.facebook_app_secret,
                    "fb_exchange_token": data["access_token"],
                },
            )
        except TokenExchangeFailed as e:
            logger.warning(f"Keeping short-lived {self.platform} token: {e.message}")
        else:
            if long_lived.get("access_token"):
                data = long_lived

        tokens = TokenSet.from_response(data, self.scopes)
        # Page tokens issued from this user token do not expire
        tokens.expires_at = None
        return tokens

    async def list_pages(self, user_token: str) -> list[dict]:
        """Pages administered by the user, in the order Graph returns them."""
        data, _ = await self._request(
            "GET",
            f"{self.graph_url}/me/accounts",
            ProfileFetchFailed,
            "list pages",
            params={"fields": "id,name,access_token,tasks", "access_token": user_token},
        )
        return data.get("data") or []

    async def _page_picture(self, page_id: str, page_token: str) -> str:
        try:
            data, _ = await self._request(
                "GET",
                f"{self.graph_url}/{page_id}/picture",
                ProfileFetchFailed,
                "get page picture",
                params={"redirect": "false", "access_token": page_token},
            )
        except SocialLinkError as e:
            logger.warning(f"No picture for page {page_id}: {e.message}")
            return ""
        return (data.get("data") or {}).get("url", "")

    async def fetch_profile(self, tokens: TokenSet) -> AccountProfile:
        pages = await self.list_pages(tokens.access_token)
        if not pages:
            raise ProfileFetchFailed("No Facebook pages found", platform=self.platform)

        page = pages[0]
        if len(pages) > 1:
            logger.info(f"User administers {len(pages)} pages, linking {page['id']}")
        page_token = page.get("access_token") or tokens.access_token
        return AccountProfile(
            provider_id=page["id"],
            username=page.get("name", ""),
            display_name=page.get("name", ""),
            profile_image=await self._page_picture(page["id"], page_token),
            extra={"page_name": page.get("name", ""), "tasks": page.get("tasks", [])},
            access_token=page_token,
        )

    async def verify_token(self, access_token: str, profile: AccountProfile) -> None:
        await self._request(
            "GET",
            f"{self.graph_url}/{profile.provider_id}",
            ProfileFetchFailed,
            "verify token",
            params={"fields": "id", "access_token": access_token},
        )

    async def publish(
        self,
        access_token: str,
        profile: AccountProfile,
        content: str,
        media_url: str | None = None,
    ) -> PublishedPost:
        params: dict = {"message": content, "access_token": access_token}
        if media_url:
            endpoint = f"{self.graph_url}/{profile.provider_id}/photos"
            params["url"] = media_url
        else:
            endpoint = f"{self.graph_url}/{profile.provider_id}/feed"

        data, _ = await self._request(
            "POST", endpoint, PublishFailed, "publish to page", params=params
        )
        post_id = data.get("post_id") or data.get("id")
        if not post_id:
            raise PublishFailed("Facebook returned no post id", platform=self.platform)

        logger.info(f"Published Facebook post {post_id} to page {profile.provider_id}")
        return PublishedPost(post_id=post_id, post_url=f"https://www.facebook.com/{post_id}")


class InstagramAdapter(FacebookAdapter):
    """
    Instagram business accounts, reached through a Facebook page.

    The linked credential holds the page access token of the first page that
    has an Instagram business account attached.
    """

    platform = "instagram"
    scopes = [
        "instagram_basic",
        "instagram_content_publish",
        "pages_show_list",
        "pages_read_engagement",
    ]
    max_length = 2200
    supports_media = True
    requires_media = True

    async def find_business_account(self, pages: list[dict]) -> tuple[dict, dict] | None:
        """Return (page, instagram_business_account) for the first eligible page."""
        for page in pages:
            try:
                data, _ = await self._request(
                    "GET",
                    f"{self.graph_url}/{page['id']}",
                    ProfileFetchFailed,
                    "look up page",
                    params={
                        "fields": "instagram_business_account",
                        "access_token": page.get("access_token", ""),
                    },
                )
            except SocialLinkError as e:
                logger.warning(f"Skipping page {page.get('id')}: {e.message}")
                continue
            account = data.get("instagram_business_account")
            if account and account.get("id"):
                return page, account
        return None

    async def fetch_profile(self, tokens: TokenSet) -> AccountProfile:
        pages = await self.list_pages(tokens.access_token)
        found = await self.find_business_account(pages)
        if not found:
            raise ProfileFetchFailed(
                "No Instagram business account is connected to your Facebook pages",
                platform=self.platform,
            )
        page, account = found
        page_token = page.get("access_token") or tokens.access_token

        data, _ = await self._request(
            "GET",
            f"{self.graph_url}/{account['id']}",
            ProfileFetchFailed,
            "get Instagram profile",
            params={
                "fields": "username,name,profile_picture_url",
                "access_token": page_token,
            },
        )
        return AccountProfile(
            provider_id=account["id"],
            username=data.get("username", ""),
            display_name=data.get("name") or data.get("username", ""),
            profile_image=data.get("profile_picture_url", ""),
            extra={"page_id": page["id"], "page_name": page.get("name", "")},
            access_token=page_token,
        )

    async def publish(
        self,
        access_token: str,
        profile: AccountProfile,
        content: str,
        media_url: str | None = None,
    ) -> PublishedPost:
        """Publish a photo post (container-based publishing)."""
        # Step 1: Create media container
        container, _ = await self._request(
            "POST",
            f"{self.graph_url}/{profile.provider_id}/media",
            PublishFailed,
            "create media container",
            params={
                "image_url": media_url,
                "caption": content,
                "access_token": access_token,
            },
        )
        container_id = container.get("id")
        if not isinstance(container_id, str) or not container_id:
            raise PublishFailed(
                "Instagram did not return a media container id", platform=self.platform
            )

        # Step 2: Publish the container
        published, _ = await self._request(
            "POST",
            f"{self.graph_url}/{profile.provider_id}/media_publish",
            PublishFailed,
            "publish media container",
            params={"creation_id": container_id, "access_token": access_token},
        )
        media_id = published.get("id")
        if not media_id:
            raise PublishFailed("Instagram returned no media id", platform=self.platform)

        logger.info(f"Published Instagram media {media_id} for @{profile.username}")
        return PublishedPost(post_id=media_id)
