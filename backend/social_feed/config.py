from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Hosted store (PostgREST under /rest/v1, auth under /auth/v1)
    store_url: str = "http://localhost:54321"
    store_anon_key: str = ""
    store_timeout_seconds: float = 30.0

    # Feed paging
    feed_default_limit: int = 20
    feed_max_limit: int = 50
    # Per-user feed via the global RPC: fetch a wider window, then filter by user id
    user_feed_window_multiplier: int = 3
    user_feed_max_window: int = 150

    # Profile activity grid
    activity_page_size: int = 24

    cors_origins: str = "http://localhost:8081,http://localhost:19006,http://localhost:19000"
    app_env: str = "development"
    debug: bool = False

    @property
    def rest_url(self) -> str:
        """Base URL of the table/RPC endpoint."""
        return self.store_url.rstrip("/") + "/rest/v1"

    @property
    def auth_url(self) -> str:
        """Base URL of the auth endpoint (user lookup, token refresh)."""
        return self.store_url.rstrip("/") + "/auth/v1"

    def validate_store_config(self) -> None:
        """Raise if production config is missing the store connection."""
        if self.app_env != "production":
            return
        if not self.store_anon_key.strip():
            raise RuntimeError("STORE_ANON_KEY must be set in production")
        if self.store_url.startswith("http://localhost"):
            raise RuntimeError("STORE_URL points at localhost in production")


settings = Settings()
