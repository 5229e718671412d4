"""One-shot refresh-and-retry around calls that need a valid access token."""

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TypeVar

from app.errors import AuthExpired
from app.models.social import Credential
from app.services.credentials import CredentialStore
from app.services.platforms import PlatformAdapter, TokenSet

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def refresh_credential(
    store: CredentialStore,
    adapter: PlatformAdapter,
    credential: Credential,
    tokens: TokenSet,
) -> TokenSet:
    """Refresh and persist tokens. Raises AuthExpired when that is impossible."""
    if not adapter.supports_refresh or not tokens.refresh_token:
        raise AuthExpired(
            f"{adapter.platform} token expired. Please reconnect your account.",
            platform=adapter.platform,
        )
    new_tokens = await adapter.refresh(tokens.refresh_token)
    store.update_tokens(credential, new_tokens)
    logger.info(f"Refreshed {adapter.platform} token for user {credential.user_id}")
    return store.tokens(credential)


async def run_with_refresh(
    store: CredentialStore,
    adapter: PlatformAdapter,
    credential: Credential,
    operation: Callable[[str], Awaitable[T]],
) -> T:
    """Run ``operation(access_token)``, refreshing at most once on auth failure.

    A token already past its stored expiry is refreshed up front (or rejected
    without a call when it cannot be refreshed); that counts as the one
    refresh.
    """
    tokens = CredentialStore.tokens(credential)
    refreshed = False
    if tokens.expires_at and tokens.expires_at <= datetime.now(UTC):
        tokens = await refresh_credential(store, adapter, credential, tokens)
        refreshed = True

    try:
        return await operation(tokens.access_token)
    except AuthExpired:
        if refreshed:
            raise
        logger.info(f"{adapter.platform} rejected token for user {credential.user_id}, refreshing")
        tokens = await refresh_credential(store, adapter, credential, tokens)
        return await operation(tokens.access_token)
