from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # PostgreSQL (usage ledger + admin overrides)
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "gateway_user"
    postgres_password: str = "changeme"
    postgres_db: str = "ai_gateway"

    # Full SQLAlchemy URL; takes precedence over the postgres_* fields when set
    database_url: str = ""

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Backend credentials (empty = backend unusable)
    openai_api_key: str = ""
    gemini_api_key: str = ""
    anthropic_api_key: str = ""

    # Generation
    default_service: str = "kdl"
    backend_timeout_seconds: float = 60.0  # Per vendor round-trip
    generation_timeout_seconds: float = 0.0  # Whole primary+backup sequence, 0 = no overall limit

    # Quota windows ("today" / "this month") are computed in this timezone
    quota_timezone: str = "Asia/Tokyo"

    # Admin API
    admin_api_token: str = ""  # leave empty to disable the header check

    # App
    app_env: str = "development"
    app_debug: bool = True

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Error tracking
    sentry_dsn: str = ""  # leave empty to disable


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []

    if not (settings.openai_api_key or settings.gemini_api_key or settings.anthropic_api_key):
        errors.append("At least one of OPENAI_API_KEY, GEMINI_API_KEY or ANTHROPIC_API_KEY must be set")

    if settings.app_env == "production":
        if not settings.admin_api_token:
            errors.append("ADMIN_API_TOKEN must be set in production")
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
