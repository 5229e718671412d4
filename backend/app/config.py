from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///postbridge.db"
    encryption_key: str = "change-me-in-production"
    log_level: str = "INFO"
    cors_origins: list[str] = ["*"]

    backend_url: str = "http://localhost:8000"
    frontend_url: str = "http://localhost:5173"
    deep_link_scheme: str = "aimediahub"
    mobile_fallback_delay_ms: int = 3000

    twitter_client_id: str = ""
    twitter_client_secret: str = ""
    linkedin_client_id: str = ""
    linkedin_client_secret: str = ""
    facebook_app_id: str = ""
    facebook_app_secret: str = ""
    graph_api_version: str = "v20.0"

    http_timeout_seconds: float = 15.0
    pending_auth_ttl_minutes: int = 10
    session_token_ttl_minutes: int = 10
    post_page_size: int = 20
    max_post_page_size: int = 50
    scheduler_interval_seconds: int = 30

    class Config:
        env_prefix = "POSTBRIDGE_"

    def callback_url(self, platform: str) -> str:
        return f"{self.backend_url.rstrip('/')}/auth/{platform}/callback"


settings = Settings()
