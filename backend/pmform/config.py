from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- App ----
    app_env: str = "local"  # local|dev|prod
    app_version: str = "2026-10.v1"

    # ---- Logging ----
    log_level: str = "INFO"
    log_format: str = "json"  # json|text

    # ---- CORS (used by main.py) ----
    cors_allow_origins: list[str] | str = ["*"]

    # ---- Rate limiting (/api/*) ----
    rate_limit_max_requests: int = 10
    rate_limit_window_ms: int = 60_000
    rate_limit_sweep_interval_seconds: int = 10 * 60

    # ---- Duplicate replay ----
    idempotency_ttl_seconds: int = 24 * 60 * 60
    idempotency_max_entries: int = 1000

    # ---- Google Sheets ----
    google_sheets_client_email: str | None = None
    google_sheets_private_key: str | None = None
    google_spreadsheet_id: str | None = None
    google_sheet_name: str = "Sheet1"
    google_token_uri: str = "https://oauth2.googleapis.com/token"
    google_sheets_base_url: str = "https://sheets.googleapis.com/v4"

    # ---- Field terminal (offline client) ----
    local_store_url: str = "sqlite:///./pmform_local.db"
    storage_prefix: str = "pmform_"
    api_base_url: str = "http://localhost:8000"
    health_path: str = "/api/health"

    autosave_delay_seconds: float = 30.0
    queue_max_retries: int = 3
    queue_item_delay_seconds: float = 0.5
    health_poll_interval_seconds: float = 30.0
    health_timeout_seconds: float = 5.0
    reconnect_settle_seconds: float = 2.0

    def model_post_init(self, __context) -> None:
        # Keys pasted from a service-account JSON keep literal "\n"
        if self.google_sheets_private_key and "\\n" in self.google_sheets_private_key:
            object.__setattr__(
                self,
                "google_sheets_private_key",
                self.google_sheets_private_key.replace("\\n", "\n"),
            )

        env = (self.app_env or "local").strip().lower()
        is_prod = env in ("prod", "production")

        if is_prod:
            origins = self.cors_allow_origins
            if origins == "*" or origins == ["*"] or (isinstance(origins, str) and "*" in origins):
                raise ValueError("SECURITY: cors_allow_origins wildcard is not allowed in prod")
            if self.rate_limit_max_requests <= 0:
                raise ValueError("rate_limit_max_requests must be positive in prod")


settings = Settings()
