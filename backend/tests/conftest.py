import json
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from app.api.deps import get_adapters, get_settings
from app.config import Settings
from app.crypto import encrypt_token
from app.database import get_session
from app.main import app
from app.models.social import Credential
from app.services.platforms import build_adapters


@pytest.fixture(name="session")
def session_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture(name="test_settings")
def settings_fixture() -> Settings:
    return Settings(
        backend_url="https://api.example.com",
        frontend_url="https://app.example.com",
        deep_link_scheme="aimediahub",
        twitter_client_id="tw-client",
        twitter_client_secret="tw-secret",
        linkedin_client_id="li-client",
        linkedin_client_secret="li-secret",
        facebook_app_id="fb-app",
        facebook_app_secret="fb-secret",
    )


@pytest.fixture(name="adapters")
def adapters_fixture(test_settings: Settings):
    return build_adapters(test_settings)


@pytest.fixture(name="client")
def client_fixture(session: Session, adapters, test_settings: Settings):
    def get_session_override():
        yield session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_adapters] = lambda: adapters
    app.dependency_overrides[get_settings] = lambda: test_settings
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def make_credential(session: Session):
    """Insert a linked credential with the given tokens."""

    def _make(
        platform: str = "twitter",
        user_id: str = "user-1",
        access_token: str = "access-token",
        refresh_token: str | None = "refresh-token",
        expires_at: datetime | None = None,
        provider_id: str = "provider-1",
        username: str = "tester",
        login_origin: str = "web",
    ) -> Credential:
        credential = Credential(
            user_id=user_id,
            platform=platform,
            provider_id=provider_id,
            access_token=encrypt_token(access_token),
            refresh_token=encrypt_token(refresh_token),
            token_expires_at=expires_at,
            scopes=json.dumps([]),
            login_origin=login_origin,
            username=username,
            display_name=username.title(),
        )
        session.add(credential)
        session.commit()
        session.refresh(credential)
        return credential

    return _make
