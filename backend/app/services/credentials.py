"""Credential store: one linked account per (user, platform)."""

import json
import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, or_, select

from app.config import Settings
from app.crypto import decrypt_token, encrypt_token
from app.errors import StoreUnavailable
from app.models.social import Credential
from app.services.oauth_state import is_expired
from app.services.platforms import AccountProfile, TokenSet

logger = logging.getLogger(__name__)


class CredentialStore:
    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.settings = settings

    def _commit(self, *objects: Credential) -> None:
        try:
            for obj in objects:
                self.db.add(obj)
            self.db.commit()
            for obj in objects:
                self.db.refresh(obj)
        except IntegrityError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Credential store write failed: {e}")
            raise StoreUnavailable("Credential store unavailable")

    def _first(self, statement) -> Credential | None:
        try:
            return self.db.exec(statement).first()
        except SQLAlchemyError as e:
            logger.error(f"Credential store read failed: {e}")
            raise StoreUnavailable("Credential store unavailable")

    # --- Lookups ---

    def get(self, user_id: str, platform: str) -> Credential | None:
        return self._first(
            select(Credential).where(
                Credential.user_id == user_id,
                Credential.platform == platform,
            )
        )

    def linked(self, user_id: str, platform: str | None = None) -> list[Credential]:
        """Linked credentials of a user, placeholders excluded."""
        statement = select(Credential).where(
            Credential.user_id == user_id,
            Credential.access_token != "",
        )
        if platform:
            statement = statement.where(Credential.platform == platform)
        try:
            return list(self.db.exec(statement.order_by(Credential.platform)).all())
        except SQLAlchemyError as e:
            logger.error(f"Credential store read failed: {e}")
            raise StoreUnavailable("Credential store unavailable")

    def state_in_use(self, state: str) -> bool:
        return self._first(
            select(Credential).where(Credential.pending_state == state)
        ) is not None

    def find_by_state(self, state: str, now: datetime | None = None) -> Credential | None:
        """Credential waiting on this state nonce, or None if unknown or expired."""
        credential = self._first(
            select(Credential).where(Credential.pending_state == state)
        )
        if not credential:
            return None
        if is_expired(credential.pending_created_at, self.settings.pending_auth_ttl_minutes, now):
            logger.info(
                f"Pending {credential.platform} authorization for user "
                f"{credential.user_id} expired"
            )
            self._clear_pending(credential)
            self._commit(credential)
            return None
        return credential

    def claim_session(
        self, token: str, platform: str | None = None, now: datetime | None = None
    ) -> Credential | None:
        """Consume a transient session handle. Each handle resolves once.

        A handle looked up under the wrong platform is left untouched.
        """
        statement = select(Credential).where(Credential.session_token == token)
        if platform:
            statement = statement.where(Credential.platform == platform)
        credential = self._first(statement)
        if not credential:
            return None
        expired = is_expired(
            credential.session_created_at, self.settings.session_token_ttl_minutes, now
        )
        credential.session_token = None
        credential.session_created_at = None
        self._commit(credential)
        return None if expired else credential

    # --- Writes ---

    @staticmethod
    def _clear_pending(credential: Credential) -> None:
        credential.pending_state = None
        credential.pending_verifier = None
        credential.pending_created_at = None

    def clear_pending(self, credential: Credential) -> None:
        self._clear_pending(credential)
        self._commit(credential)

    def start_pending(
        self,
        user_id: str,
        platform: str,
        state: str,
        verifier: str | None,
        origin: str,
    ) -> Credential:
        """Upsert the pending authorization, creating a placeholder row if needed."""
        for attempt in range(2):
            credential = self.get(user_id, platform) or Credential(
                user_id=user_id, platform=platform
            )
            credential.pending_state = state
            credential.pending_verifier = verifier
            credential.pending_created_at = datetime.now(UTC)
            credential.login_origin = origin
            credential.session_token = None
            credential.session_created_at = None
            credential.updated_at = datetime.now(UTC)
            try:
                self._commit(credential)
                return credential
            except IntegrityError:
                # A concurrent request inserted the row first; update it instead
                if attempt:
                    raise StoreUnavailable("Could not store pending authorization")
        raise StoreUnavailable("Could not store pending authorization")

    def save_link(
        self,
        credential: Credential,
        tokens: TokenSet,
        profile: AccountProfile,
        session_token: str | None = None,
    ) -> Credential:
        """Overwrite tokens and profile after a successful callback."""
        credential.provider_id = profile.provider_id
        credential.access_token = encrypt_token(profile.access_token or tokens.access_token)
        credential.refresh_token = encrypt_token(tokens.refresh_token)
        credential.token_expires_at = tokens.expires_at
        credential.scopes = json.dumps(tokens.scopes)
        credential.username = profile.username
        credential.display_name = profile.display_name
        credential.profile_image = profile.profile_image
        credential.profile_extra = json.dumps(profile.extra)
        credential.session_token = session_token
        credential.session_created_at = datetime.now(UTC) if session_token else None
        credential.updated_at = datetime.now(UTC)
        self._clear_pending(credential)
        self._commit(credential)
        return credential

    def update_tokens(self, credential: Credential, tokens: TokenSet) -> Credential:
        credential.access_token = encrypt_token(tokens.access_token)
        if tokens.refresh_token:
            credential.refresh_token = encrypt_token(tokens.refresh_token)
        credential.token_expires_at = tokens.expires_at
        if tokens.scopes:
            credential.scopes = json.dumps(tokens.scopes)
        credential.updated_at = datetime.now(UTC)
        self._commit(credential)
        return credential

    def delete(self, user_id: str, platform: str) -> int:
        try:
            rows = self.db.exec(
                select(Credential).where(
                    Credential.user_id == user_id,
                    Credential.platform == platform,
                )
            ).all()
            for credential in rows:
                self.db.delete(credential)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Credential delete failed: {e}")
            raise StoreUnavailable("Credential store unavailable")
        return len(rows)

    def sweep_expired(self, now: datetime | None = None) -> int:
        """Drop abandoned pending authorizations and unclaimed session handles."""
        now = now or datetime.now(UTC)
        pending_cutoff = now - timedelta(minutes=self.settings.pending_auth_ttl_minutes)
        session_cutoff = now - timedelta(minutes=self.settings.session_token_ttl_minutes)
        try:
            stale = self.db.exec(
                select(Credential).where(
                    or_(
                        Credential.pending_created_at < pending_cutoff,
                        Credential.session_created_at < session_cutoff,
                    )
                )
            ).all()
            for credential in stale:
                if credential.pending_created_at and credential.pending_created_at < pending_cutoff:
                    self._clear_pending(credential)
                if credential.session_created_at and credential.session_created_at < session_cutoff:
                    credential.session_token = None
                    credential.session_created_at = None
                if not credential.is_linked and not credential.pending_state:
                    # Placeholder from an authorization that never completed
                    self.db.delete(credential)
                else:
                    self.db.add(credential)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Credential sweep failed: {e}")
            raise StoreUnavailable("Credential store unavailable")
        return len(stale)

    # --- Decoding ---

    @staticmethod
    def tokens(credential: Credential) -> TokenSet:
        return TokenSet(
            access_token=decrypt_token(credential.access_token),
            refresh_token=decrypt_token(credential.refresh_token) or None,
            expires_at=credential.token_expires_at,
            scopes=json.loads(credential.scopes or "[]"),
        )

    @staticmethod
    def profile(credential: Credential) -> AccountProfile:
        return AccountProfile(
            provider_id=credential.provider_id,
            username=credential.username,
            display_name=credential.display_name,
            profile_image=credential.profile_image,
            extra=json.loads(credential.profile_extra or "{}"),
        )
