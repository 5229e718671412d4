from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from sqlmodel import Session, select

from app.config import Settings
from app.crypto import decrypt_token
from app.errors import (
    AuthExpired,
    MissingParameter,
    ProfileFetchFailed,
    SessionExpired,
    TokenExchangeFailed,
)
from app.models.common import Platform
from app.models.social import Credential
from app.services.link_flow import LinkFlowController
from app.services.platforms import AccountProfile, TokenSet


@pytest.fixture
def flow(session: Session, adapters, test_settings: Settings) -> LinkFlowController:
    return LinkFlowController(session, adapters, test_settings)


def _state_of(auth_url: str) -> str:
    return parse_qs(urlparse(auth_url).query)["state"][0]


def _rows(session: Session) -> list[Credential]:
    return list(session.exec(select(Credential)).all())


TOKENS = TokenSet(
    access_token="tw-access",
    refresh_token="tw-refresh",
    expires_at=datetime.now(UTC) + timedelta(hours=2),
    scopes=["tweet.read"],
)
PROFILE = AccountProfile(
    provider_id="2244994945",
    username="jack",
    display_name="Jack",
    profile_image="https://img/jack.png",
)


class TestBeginLink:
    def test_records_pending_authorization(self, flow, session):
        url = flow.begin_link("user-1", "twitter")
        params = parse_qs(urlparse(url).query)

        credential = flow.store.get("user-1", "twitter")
        assert credential.pending_state == params["state"][0]
        assert credential.pending_verifier
        assert credential.login_origin == "web"
        assert not credential.is_linked
        assert params["code_challenge_method"] == ["S256"]

    def test_non_pkce_platform_has_no_verifier(self, flow):
        flow.begin_link("user-1", "linkedin", origin="android")
        credential = flow.store.get("user-1", "linkedin")
        assert credential.pending_verifier is None
        assert credential.login_origin == "android"

    def test_unknown_origin_defaults_to_web(self, flow):
        flow.begin_link("user-1", "linkedin", origin="desktop")
        assert flow.store.get("user-1", "linkedin").login_origin == "web"

    def test_requires_user(self, flow):
        with pytest.raises(MissingParameter):
            flow.begin_link("", "twitter")
        with pytest.raises(MissingParameter):
            flow.begin_link(None, "twitter")

    def test_restart_replaces_state(self, flow, session):
        first = _state_of(flow.begin_link("user-1", "twitter"))
        second = _state_of(flow.begin_link("user-1", "twitter"))

        assert first != second
        assert len(_rows(session)) == 1
        assert flow.store.find_by_state(first) is None
        assert flow.store.find_by_state(second) is not None


class TestCompleteLink:
    @pytest.mark.asyncio
    async def test_web_link(self, flow, adapters, session):
        state = _state_of(flow.begin_link("user-1", "twitter"))
        verifier = flow.store.get("user-1", "twitter").pending_verifier
        adapter = adapters[Platform.TWITTER]

        with patch.object(adapter, "exchange_code", AsyncMock(return_value=TOKENS)) as exchange, \
                patch.object(adapter, "fetch_profile", AsyncMock(return_value=PROFILE)):
            result = await flow.complete_link("auth-code", state, "twitter")

        exchange.assert_awaited_once_with("auth-code", verifier)
        assert result.origin == "web"
        assert result.session_token is None
        assert result.deep_link is None
        assert result.redirect_url == (
            "https://app.example.com/twitter-manager?twitter=connected&username=jack&userId=user-1"
        )

        credential = flow.store.get("user-1", "twitter")
        assert credential.is_linked
        assert credential.provider_id == "2244994945"
        assert decrypt_token(credential.access_token) == "tw-access"
        assert credential.access_token != "tw-access"
        assert credential.pending_state is None
        assert credential.pending_verifier is None

    @pytest.mark.asyncio
    async def test_state_is_single_use(self, flow, adapters):
        state = _state_of(flow.begin_link("user-1", "twitter"))
        adapter = adapters[Platform.TWITTER]

        with patch.object(adapter, "exchange_code", AsyncMock(return_value=TOKENS)), \
                patch.object(adapter, "fetch_profile", AsyncMock(return_value=PROFILE)):
            await flow.complete_link("auth-code", state, "twitter")
            with pytest.raises(SessionExpired):
                await flow.complete_link("auth-code", state, "twitter")

    @pytest.mark.asyncio
    async def test_unknown_state_changes_nothing(self, flow, adapters, session, make_credential):
        make_credential(platform="twitter", user_id="user-1")
        before = [(c.id, c.access_token, c.updated_at) for c in _rows(session)]
        adapter = adapters[Platform.TWITTER]

        with patch.object(adapter, "exchange_code", AsyncMock()) as exchange:
            with pytest.raises(SessionExpired):
                await flow.complete_link("auth-code", "never-issued", "twitter")

        exchange.assert_not_awaited()
        assert [(c.id, c.access_token, c.updated_at) for c in _rows(session)] == before

    @pytest.mark.asyncio
    async def test_missing_code(self, flow):
        with pytest.raises(MissingParameter):
            await flow.complete_link(None, "state", "twitter")

    @pytest.mark.asyncio
    async def test_platform_mismatch(self, flow):
        state = _state_of(flow.begin_link("user-1", "twitter"))
        with pytest.raises(SessionExpired):
            await flow.complete_link("auth-code", state, "linkedin")

    @pytest.mark.asyncio
    async def test_relink_overwrites_single_row(self, flow, adapters, session, make_credential):
        make_credential(platform="twitter", user_id="user-1", access_token="old-access")
        state = _state_of(flow.begin_link("user-1", "twitter"))
        adapter = adapters[Platform.TWITTER]

        with patch.object(adapter, "exchange_code", AsyncMock(return_value=TOKENS)), \
                patch.object(adapter, "fetch_profile", AsyncMock(return_value=PROFILE)):
            await flow.complete_link("auth-code", state, "twitter")

        rows = _rows(session)
        assert len(rows) == 1
        assert decrypt_token(rows[0].access_token) == "tw-access"
        assert rows[0].username == "jack"

    @pytest.mark.asyncio
    async def test_mobile_link_issues_session_handle(self, flow, adapters):
        state = _state_of(flow.begin_link("user-1", "twitter", origin="ios"))
        adapter = adapters[Platform.TWITTER]

        with patch.object(adapter, "exchange_code", AsyncMock(return_value=TOKENS)), \
                patch.object(adapter, "fetch_profile", AsyncMock(return_value=PROFILE)):
            result = await flow.complete_link("auth-code", state, "twitter")

        assert result.origin == "ios"
        assert result.session_token.startswith("tw_")
        assert result.deep_link.startswith("aimediahub://twitter-callback?")
        params = parse_qs(urlparse(result.deep_link).query)
        assert params["session_id"] == [result.session_token]
        assert params["status"] == ["success"]
        assert params["username"] == ["jack"]
        assert "tw-access" not in result.deep_link
        assert "tw-refresh" not in result.deep_link

    @pytest.mark.asyncio
    async def test_page_token_replaces_user_token(self, flow, adapters):
        state = _state_of(flow.begin_link("user-1", "facebook"))
        adapter = adapters[Platform.FACEBOOK]
        page = AccountProfile(provider_id="page-1", username="Page", access_token="page-token")

        with patch.object(
            adapter, "exchange_code", AsyncMock(return_value=TokenSet(access_token="user-token"))
        ), patch.object(adapter, "fetch_profile", AsyncMock(return_value=page)):
            await flow.complete_link("auth-code", state, "facebook")

        credential = flow.store.get("user-1", "facebook")
        assert decrypt_token(credential.access_token) == "page-token"
        assert credential.provider_id == "page-1"

    @pytest.mark.asyncio
    async def test_exchange_failure_consumes_state(self, flow, adapters):
        state = _state_of(flow.begin_link("user-1", "twitter", origin="android"))
        adapter = adapters[Platform.TWITTER]

        with patch.object(
            adapter,
            "exchange_code",
            AsyncMock(side_effect=TokenExchangeFailed("bad code", platform="twitter")),
        ):
            with pytest.raises(TokenExchangeFailed) as exc_info:
                await flow.complete_link("auth-code", state, "twitter")

        assert exc_info.value.origin == "android"
        credential = flow.store.get("user-1", "twitter")
        assert credential.pending_state is None
        assert not credential.is_linked

    @pytest.mark.asyncio
    async def test_profile_failure_keeps_existing_link(self, flow, adapters, make_credential):
        make_credential(platform="twitter", user_id="user-1", access_token="old-access")
        state = _state_of(flow.begin_link("user-1", "twitter"))
        adapter = adapters[Platform.TWITTER]

        with patch.object(adapter, "exchange_code", AsyncMock(return_value=TOKENS)), \
                patch.object(
                    adapter,
                    "fetch_profile",
                    AsyncMock(side_effect=ProfileFetchFailed("no profile", platform="twitter")),
                ):
            with pytest.raises(ProfileFetchFailed):
                await flow.complete_link("auth-code", state, "twitter")

        credential = flow.store.get("user-1", "twitter")
        assert decrypt_token(credential.access_token) == "old-access"


class TestCancelAndSessions:
    def test_cancel_link(self, flow):
        state = _state_of(flow.begin_link("user-1", "linkedin", origin="android"))
        assert flow.cancel_link(state) == "android"
        assert flow.store.find_by_state(state) is None

    def test_cancel_unknown_state(self, flow):
        assert flow.cancel_link("nope") == "web"
        assert flow.cancel_link(None) == "web"

    @pytest.mark.asyncio
    async def test_session_handle_resolves_once(self, flow, adapters):
        state = _state_of(flow.begin_link("user-1", "twitter", origin="android"))
        adapter = adapters[Platform.TWITTER]
        with patch.object(adapter, "exchange_code", AsyncMock(return_value=TOKENS)), \
                patch.object(adapter, "fetch_profile", AsyncMock(return_value=PROFILE)):
            result = await flow.complete_link("auth-code", state, "twitter")

        summary = flow.resolve_transient_session(result.session_token)
        assert summary.user_id == "user-1"
        assert summary.username == "jack"
        assert "access_token" not in summary.model_dump()

        with pytest.raises(SessionExpired):
            flow.resolve_transient_session(result.session_token)

    @pytest.mark.asyncio
    async def test_session_handle_is_scoped_to_platform(self, flow, adapters):
        state = _state_of(flow.begin_link("user-1", "twitter", origin="android"))
        adapter = adapters[Platform.TWITTER]
        with patch.object(adapter, "exchange_code", AsyncMock(return_value=TOKENS)), \
                patch.object(adapter, "fetch_profile", AsyncMock(return_value=PROFILE)):
            result = await flow.complete_link("auth-code", state, "twitter")

        with pytest.raises(SessionExpired):
            flow.resolve_transient_session(result.session_token, "linkedin")
        # The mismatched lookup does not consume the handle
        assert flow.resolve_transient_session(result.session_token, "twitter").username == "jack"

    def test_session_handle_required(self, flow):
        with pytest.raises(MissingParameter):
            flow.resolve_transient_session(None)


class TestUnlinkAndCheck:
    def test_unlink_is_idempotent(self, flow, make_credential):
        make_credential(platform="twitter", user_id="user-1")
        assert flow.unlink("user-1", "twitter") == 1
        assert flow.unlink("user-1", "twitter") == 0
        assert flow.store.get("user-1", "twitter") is None

    def test_unlink_leaves_other_platforms(self, flow, make_credential):
        make_credential(platform="twitter", user_id="user-1")
        make_credential(platform="linkedin", user_id="user-1")
        flow.unlink("user-1", "twitter")
        assert flow.store.get("user-1", "linkedin") is not None

    @pytest.mark.asyncio
    async def test_check_without_credential(self, flow):
        status = await flow.check_link("user-1", "twitter")
        assert status.connected is False
        assert status.account is None

    @pytest.mark.asyncio
    async def test_check_pending_only_is_not_connected(self, flow):
        flow.begin_link("user-1", "twitter")
        status = await flow.check_link("user-1", "twitter")
        assert status.connected is False

    @pytest.mark.asyncio
    async def test_check_connected(self, flow, adapters, make_credential):
        make_credential(platform="linkedin", user_id="user-1", username="jane")
        adapter = adapters[Platform.LINKEDIN]

        with patch.object(adapter, "verify_token", AsyncMock(return_value=None)) as verify:
            status = await flow.check_link("user-1", "linkedin")

        verify.assert_awaited_once()
        assert status.connected is True
        assert status.account.username == "jane"

    @pytest.mark.asyncio
    async def test_check_rejected_token(self, flow, adapters, make_credential):
        make_credential(platform="linkedin", user_id="user-1")
        adapter = adapters[Platform.LINKEDIN]

        with patch.object(
            adapter, "verify_token", AsyncMock(side_effect=AuthExpired("revoked"))
        ):
            status = await flow.check_link("user-1", "linkedin")

        assert status.connected is False
        assert status.account is not None

    @pytest.mark.asyncio
    async def test_check_outage_uses_stored_expiry(self, flow, adapters, make_credential):
        make_credential(
            platform="linkedin",
            user_id="user-1",
            expires_at=datetime.now(UTC) + timedelta(days=30),
        )
        adapter = adapters[Platform.LINKEDIN]

        with patch.object(
            adapter, "verify_token", AsyncMock(side_effect=ProfileFetchFailed("down"))
        ):
            status = await flow.check_link("user-1", "linkedin")

        assert status.connected is True


class TestListAccounts:
    def test_lists_linked_accounts_across_platforms(self, flow, make_credential):
        make_credential(platform="twitter", username="jack")
        make_credential(platform="facebook", username="my page")
        make_credential(platform="twitter", user_id="user-2")
        flow.begin_link("user-1", "linkedin")

        accounts = flow.list_accounts("user-1")

        assert [(a.platform, a.username) for a in accounts] == [
            ("facebook", "my page"),
            ("twitter", "jack"),
        ]

    def test_filters_by_platform(self, flow, make_credential):
        make_credential(platform="twitter")
        make_credential(platform="facebook", username="my page")

        pages = flow.list_accounts("user-1", "facebook")
        assert [a.username for a in pages] == ["my page"]

    def test_requires_user(self, flow):
        with pytest.raises(MissingParameter):
            flow.list_accounts(" ")
