"""Application settings and configuration.

This module defines all configuration options for the Duet chat service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Duet Chat", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")

    # Security and authentication
    secret_key: str = Field(alias="SECRET_KEY")
    debug: bool = Field(default=False, alias="DEBUG")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24 * 30,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )

    # Database configuration
    database_url: str = Field(default="sqlite:///./duet.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Messaging limits and pagination
    message_max_length: int = Field(default=1000, alias="MESSAGE_MAX_LENGTH")
    messages_page_limit: int = Field(default=50, alias="MESSAGES_PAGE_LIMIT")
    chats_page_limit: int = Field(default=20, alias="CHATS_PAGE_LIMIT")

    # Embedded-message migration: read the legacy array when the message table is empty
    legacy_read_fallback: bool = Field(default=True, alias="LEGACY_READ_FALLBACK")

    # Optimistic versioning retries for chat read-modify-write sequences
    chat_write_retries: int = Field(default=3, alias="CHAT_WRITE_RETRIES")

    # Compatibility quiz consent window (inclusive message counts)
    quiz_trigger_min: int = Field(default=15, alias="QUIZ_TRIGGER_MIN")
    quiz_trigger_max: int = Field(default=20, alias="QUIZ_TRIGGER_MAX")

    # Real-time transport and outbound work
    realtime_presence_timeout_seconds: float = Field(
        default=2.0,
        alias="REALTIME_PRESENCE_TIMEOUT_SECONDS",
    )
    outbound_queue_size: int = Field(default=1000, alias="OUTBOUND_QUEUE_SIZE")
    outbound_workers: int = Field(default=4, alias="OUTBOUND_WORKERS")

    # Push gateway (Expo-compatible HTTP push API)
    push_enabled: bool = Field(default=True, alias="PUSH_ENABLED")
    push_gateway_url: str = Field(
        default="https://exp.host/--/api/v2/push/send",
        alias="PUSH_GATEWAY_URL",
    )
    push_gateway_access_token: str | None = Field(
        default=None,
        alias="PUSH_GATEWAY_ACCESS_TOKEN",
    )
    push_http_timeout_seconds: float = Field(default=10.0, alias="PUSH_HTTP_TIMEOUT_SECONDS")
    push_preview_length: int = Field(default=100, alias="PUSH_PREVIEW_LENGTH")
    push_token_cap: int = Field(default=5, alias="PUSH_TOKEN_CAP")
    push_token_max_failures: int = Field(default=3, alias="PUSH_TOKEN_MAX_FAILURES")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()  # type: ignore[call-arg]
