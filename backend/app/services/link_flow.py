"""
Account linking: the OAuth redirect, callback and upsert sequence.

One state machine serves every platform. The per-platform differences live
in the adapters; this module only moves a Credential through
placeholder -> pending -> linked and hands the boundary layer a LinkResult.
"""

import logging
from datetime import UTC, datetime
from urllib.parse import urlencode

from pydantic import BaseModel
from sqlmodel import Session

from app.config import Settings
from app.errors import (
    AuthExpired,
    MissingParameter,
    SessionExpired,
    SocialLinkError,
    StoreUnavailable,
)
from app.models.common import LoginOrigin, Platform
from app.models.social import Credential
from app.services.credentials import CredentialStore
from app.services.oauth_state import (
    generate_pkce_pair,
    generate_session_token,
    generate_state,
)
from app.services.platforms import PlatformAdapter, get_adapter
from app.services.token_refresh import run_with_refresh

logger = logging.getLogger(__name__)

STATE_ATTEMPTS = 5


class CredentialSummary(BaseModel):
    user_id: str
    platform: str
    provider_id: str
    username: str
    name: str
    profile_image: str
    connected_at: datetime


class ConnectionStatus(BaseModel):
    connected: bool
    account: CredentialSummary | None = None
    token_expires_at: datetime | None = None


class LinkResult(BaseModel):
    platform: str
    origin: str
    user_id: str
    username: str
    redirect_url: str
    session_token: str | None = None
    deep_link: str | None = None


def summarize(credential: Credential) -> CredentialSummary:
    return CredentialSummary(
        user_id=credential.user_id,
        platform=credential.platform,
        provider_id=credential.provider_id,
        username=credential.username,
        name=credential.display_name,
        profile_image=credential.profile_image,
        connected_at=credential.created_at,
    )


def parse_origin(origin: str | None) -> LoginOrigin:
    try:
        return LoginOrigin((origin or "web").lower())
    except ValueError:
        return LoginOrigin.WEB


def web_success_url(settings: Settings, platform: str, username: str, user_id: str) -> str:
    params = {platform: "connected", "username": username, "userId": user_id}
    return f"{settings.frontend_url.rstrip('/')}/{platform}-manager?{urlencode(params)}"


def web_error_url(settings: Settings, platform: str, message: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/{platform}-connect?{urlencode({'error': message})}"


def deep_link_url(settings: Settings, platform: str, params: dict) -> str:
    return f"{settings.deep_link_scheme}://{platform}-callback?{urlencode(params)}"


class LinkFlowController:
    def __init__(
        self,
        db: Session,
        adapters: dict[Platform, PlatformAdapter],
        settings: Settings,
    ):
        self.store = CredentialStore(db, settings)
        self.adapters = adapters
        self.settings = settings

    def adapter(self, platform: str) -> PlatformAdapter:
        return get_adapter(self.adapters, platform)

    @staticmethod
    def _require_user(user_id: str | None) -> str:
        if not user_id or not user_id.strip():
            raise MissingParameter("userId required")
        return user_id.strip()

    def _fresh_state(self) -> str:
        for _ in range(STATE_ATTEMPTS):
            state = generate_state()
            if not self.store.state_in_use(state):
                return state
        raise StoreUnavailable("Could not allocate an OAuth state")

    # --- Link ---

    def begin_link(self, user_id: str | None, platform: str, origin: str | None = None) -> str:
        """Record a pending authorization and return the provider's auth URL."""
        user_id = self._require_user(user_id)
        adapter = self.adapter(platform)
        login_origin = parse_origin(origin)

        state = self._fresh_state()
        verifier, challenge = generate_pkce_pair() if adapter.uses_pkce else (None, None)
        self.store.start_pending(user_id, adapter.platform, state, verifier, login_origin.value)

        logger.info(
            f"Starting {adapter.platform} link for user {user_id} ({login_origin.value})"
        )
        return adapter.build_auth_url(state, challenge)

    async def complete_link(
        self, code: str | None, state: str | None, platform: str | None = None
    ) -> LinkResult:
        """Finish the callback: exchange the code, fetch the profile, upsert."""
        if not code or not state:
            raise MissingParameter("Missing code or state")

        credential = self.store.find_by_state(state)
        if not credential or (platform and credential.platform != platform):
            logger.warning("OAuth callback with unknown or expired state")
            raise SessionExpired("Session expired")

        adapter = self.adapter(credential.platform)
        origin = parse_origin(credential.login_origin)
        try:
            tokens = await adapter.exchange_code(code, credential.pending_verifier)
            profile = await adapter.fetch_profile(tokens)
        except SocialLinkError as e:
            # The state is single use even when the exchange fails
            self.store.clear_pending(credential)
            e.origin = origin.value
            raise

        session_token = generate_session_token(adapter.platform) if origin.is_mobile else None
        self.store.save_link(credential, tokens, profile, session_token)
        logger.info(
            f"Linked {adapter.platform} account {profile.username or profile.provider_id} "
            f"for user {credential.user_id}"
        )

        redirect_url = web_success_url(
            self.settings, adapter.platform, profile.username, credential.user_id
        )
        deep_link = None
        if session_token:
            deep_link = deep_link_url(
                self.settings,
                adapter.platform,
                {
                    "session_id": session_token,
                    "status": "success",
                    "username": profile.username,
                    "user_id": credential.user_id,
                },
            )
        return LinkResult(
            platform=adapter.platform,
            origin=origin.value,
            user_id=credential.user_id,
            username=profile.username,
            redirect_url=redirect_url,
            session_token=session_token,
            deep_link=deep_link,
        )

    def cancel_link(self, state: str | None) -> str:
        """Drop a pending authorization the user declined. Returns its origin."""
        credential = self.store.find_by_state(state) if state else None
        if not credential:
            return LoginOrigin.WEB.value
        self.store.clear_pending(credential)
        logger.info(f"User {credential.user_id} declined {credential.platform} authorization")
        return parse_origin(credential.login_origin).value

    def resolve_transient_session(
        self, token: str | None, platform: str | None = None
    ) -> CredentialSummary:
        if not token:
            raise MissingParameter("session_id required")
        if platform:
            platform = self.adapter(platform).platform
        credential = self.store.claim_session(token, platform)
        if not credential:
            raise SessionExpired("Session expired or invalid")
        return summarize(credential)

    # --- Manage ---

    def unlink(self, user_id: str | None, platform: str) -> int:
        user_id = self._require_user(user_id)
        adapter = self.adapter(platform)
        deleted = self.store.delete(user_id, adapter.platform)
        logger.info(f"Disconnected {adapter.platform} for user {user_id} ({deleted} removed)")
        return deleted

    def list_accounts(
        self, user_id: str | None, platform: str | None = None
    ) -> list[CredentialSummary]:
        """Every linked account of the user, optionally for one platform."""
        user_id = self._require_user(user_id)
        if platform:
            platform = self.adapter(platform).platform
        return [summarize(c) for c in self.store.linked(user_id, platform)]

    async def check_link(self, user_id: str | None, platform: str) -> ConnectionStatus:
        user_id = self._require_user(user_id)
        adapter = self.adapter(platform)
        credential = self.store.get(user_id, adapter.platform)
        if not credential or not credential.is_linked:
            return ConnectionStatus(connected=False)

        profile = self.store.profile(credential)
        try:
            await run_with_refresh(
                self.store,
                adapter,
                credential,
                lambda token: adapter.verify_token(token, profile),
            )
            connected = True
        except AuthExpired:
            connected = False
        except SocialLinkError as e:
            logger.warning(
                f"Could not verify {adapter.platform} token for user {user_id}: {e.message}"
            )
            expires_at = credential.token_expires_at
            connected = expires_at is None or expires_at > datetime.now(UTC)

        return ConnectionStatus(
            connected=connected,
            account=summarize(credential),
            token_expires_at=credential.token_expires_at,
        )
