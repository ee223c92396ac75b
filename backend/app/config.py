from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
        frozen=True,
    )

    # DATABASE_URL wins; otherwise built from the DB_* parts (see sqlalchemy_url)
    database_url: str = ""
    db_driver: str = "postgresql+asyncpg"
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "billing"
    db_user: str = "billing"
    db_password: str = ""

    app_env: str = "development"  # "production" enables strict startup checks
    debug: bool = False
    cors_origins: str = "http://localhost:5173"
    enable_hsts: bool = False

    # fincode gateway; credential candidates are tried in order
    fincode_api_key: str = Field(
        default="",
        validation_alias=AliasChoices(
            "FINCODE_API_KEY",
            "FINCODE_SECRET_KEY",
            "FINCODE_PRIVATE_KEY",
            "SECRET_KEY",
        ),
    )
    fincode_base_url: str = Field(
        default="https://api.test.fincode.jp",
        validation_alias=AliasChoices("FINCODE_BASE_URL", "FINCODE_API_BASE_URL"),
    )
    fincode_public_key: str = Field(
        default="",
        validation_alias=AliasChoices("FINCODE_PUBLIC_KEY", "PUBLIC_KEY"),
    )
    fincode_timeout_seconds: float = 30.0

    # Fallback plan when the gateway does not describe one
    fincode_plan_id: str = ""
    subscription_plan_name: str = ""
    subscription_plan_price: str = ""
    subscription_plan_currency: str = "JPY"

    # Cookie-bound server-side sessions
    session_timeout_seconds: int = 3600
    session_refresh_seconds: int = 300
    session_cookie_name: str = "sid"
    session_cookie_path: str = "/"
    session_cookie_domain: str | None = None
    session_cookie_secure: bool | None = None  # None: Secure only on https requests

    rate_limit_enabled: bool = True
    rate_limit_default: str = "200/minute"
    rate_limit_auth: str = "10/minute"

    @property
    def sqlalchemy_url(self) -> str:
        """Async SQLAlchemy URL used by the application engine."""
        if self.database_url:
            return self.database_url
        return (
            f"{self.db_driver}://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def sync_database_url(self) -> str:
        """URL for sync drivers (Alembic)."""
        return self.sqlalchemy_url.replace("+asyncpg", "", 1).replace("+aiosqlite", "", 1)

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def validate_gateway_config(self) -> None:
        """Raise if production config cannot reach the payment gateway."""
        if self.app_env != "production":
            return
        if not self.fincode_api_key.strip():
            raise RuntimeError(
                "FINCODE API key (FINCODE_API_KEY/FINCODE_SECRET_KEY) must be set in production"
            )


settings = Settings()
