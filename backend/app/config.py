from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_JWT_SECRET = "dev-change-me"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- App ----
    app_env: str = "local"  # local|dev|prod
    database_url: str = "sqlite:///./appraisalhub.db"
    app_version: str = "2026-10-19.v1"

    # ---- CORS (used by main.py) ----
    cors_allow_origins: list[str] | str = ["*"]

    # ---- Logging ----
    log_level: str = "INFO"
    sql_log_level: str = "WARNING"
    log_format: str = "json"  # json|text

    # ---- Auth ----
    auth_mode: str = "dev"  # dev|jwt
    dev_auto_provision: bool = True

    # Dev header names
    dev_header_user_email: str = "X-User-Email"
    dev_header_user_role: str = "X-User-Role"

    # ---- JWT ----
    jwt_secret: str = DEV_JWT_SECRET
    jwt_algorithm: str = "HS256"
    jwt_exp_minutes: int = 60
    jwt_cookie_name: str = "appraisalhub_jwt"
    jwt_cookie_secure: int = 0
    jwt_cookie_samesite: str = "lax"

    # ---- Session refresh (client side) ----
    session_refresh_interval_seconds: int = 15 * 60

    # ---- Reports ----
    report_storage_dir: str = "./var/reports"
    report_url_ttl_seconds: int = 3600
    report_upload_retries: int = 1
    public_base_url: str = "http://localhost:8000"
    report_company_name: str = "AppraisalHub"
    report_primary_color: str = "#2563EB"
    report_secondary_color: str = "#E5E7EB"

    # ---- Properties ----
    property_page_size: int = 10
    property_image_max_bytes: int = 5 * 1024 * 1024

    # ---- Valuation ----
    valuation_spread_pct: float = 0.05
    valuation_min_comparables: int = 1
    valuation_auto_publish: bool = False

    # ---- Celery ----
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None

    def model_post_init(self, __context) -> None:
        env = (self.app_env or "local").strip().lower()
        is_prod = env in ("prod", "production")

        if is_prod:
            if (self.auth_mode or "").strip().lower() == "dev":
                raise ValueError("SECURITY: auth_mode=dev is not allowed in prod")
            if self.jwt_secret == DEV_JWT_SECRET:
                raise ValueError("SECURITY: jwt_secret must be set in prod")

            origins = self.cors_allow_origins
            if origins == "*" or origins == ["*"] or (isinstance(origins, str) and "*" in origins):
                raise ValueError("SECURITY: cors_allow_origins wildcard is not allowed in prod")


settings = Settings()
