"""Application configuration loaded from environment variables.

Settings for database, expiry store, token lifetimes, pagination, and
authentication. Uses pydantic-settings for validation and .env file support.
"""

from typing import Literal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "identity_dev_password"  # nosec B105

# Minimum length for AUTH_SECRET in production (256 bits = 32 bytes)
_MIN_AUTH_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "identity"
    database_user: str = "identity_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # Expiry store (ephemeral tokens)
    # "memory" keeps tokens in-process (single instance, local development).
    # "redis" requires keyspace notifications for expiry events.
    expiry_store: Literal["redis", "memory"] = "redis"
    redis_url: str = "redis://localhost:6379/0"
    # Issue CONFIG SET notify-keyspace-events Ex on startup. Managed Redis
    # offerings usually forbid CONFIG; enable it server-side there instead.
    redis_configure_notifications: bool = True
    # Phantom copies outlive their token by this long so the payload can be
    # read when the expiry notification arrives.
    expiry_grace_seconds: int = 300
    memory_store_sweep_seconds: float = 1.0

    # Token lifetimes
    password_reset_token_ttl_minutes: int = 30
    activation_token_ttl_minutes: int = 24 * 60
    session_token_ttl_minutes: int = 30

    # Pagination (0-indexed pages)
    default_page_size: int = 10
    max_page_size: int = 100

    # API
    # 0.0.0.0 binds to all network interfaces (required for Docker containers)
    api_host: str = "0.0.0.0"  # nosec B104
    api_port: int = 8000
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"
    # Create demo accounts on startup when their emails are absent
    seed_demo_accounts: bool = False
    demo_account_password: SecretStr = SecretStr("Demo-passw0rd!")  # nosec B105

    # Authentication
    auth_secret: SecretStr = SecretStr("")
    auth_issuer: str = "identity-accounts"
    auth_audience: str = "identity-accounts"
    auth_cookie_name: str = "identity.session-token"
    auth_cookie_secure: bool = True
    auth_cookie_samesite: Literal["lax", "strict", "none"] = "lax"
    auth_cookie_domain: str = ""
    # bcrypt cost factor. Tests lower it; production keeps 12.
    bcrypt_rounds: int = 12

    # Email
    email_from: str = "noreply@identity.local"
    resend_api_key: SecretStr = SecretStr("")

    # Frontend URL (reset-password form lives there)
    frontend_url: str = "http://localhost:3000"

    # Backend URL (activation links hit the API directly)
    backend_url: str = "http://localhost:8000"

    # Rate Limiting (Security)
    # Format: "count/period" (e.g., "10/minute", "100/hour")
    rate_limit_enabled: bool = True  # Disable for testing

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def database_url_sync(self) -> str:
        """Sync database URL for Alembic."""
        return (
            f"postgresql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate configuration invariants and production security.

        Checks:
        - Page sizes are positive and the default fits under the maximum
        - Token TTLs are positive
        - SameSite=None requires Secure flag (browser requirement)
        - CORS must not use wildcard origin (incompatible with credentials)
        - Demo accounts are never seeded in production
        - Database password must not be the default in production
        - AUTH_SECRET must be set and >= 32 chars in production
        """
        if self.default_page_size < 1 or self.max_page_size < 1:
            msg = "DEFAULT_PAGE_SIZE and MAX_PAGE_SIZE must be positive."
            raise ValueError(msg)
        if self.default_page_size > self.max_page_size:
            msg = (
                "DEFAULT_PAGE_SIZE cannot exceed MAX_PAGE_SIZE. "
                f"Got: {self.default_page_size} > {self.max_page_size}"
            )
            raise ValueError(msg)

        ttls = (
            self.password_reset_token_ttl_minutes,
            self.activation_token_ttl_minutes,
            self.session_token_ttl_minutes,
        )
        if min(ttls) <= 0:
            msg = "Token TTLs must be positive."
            raise ValueError(msg)

        if self.auth_cookie_samesite == "none" and not self.auth_cookie_secure:
            msg = (
                "AUTH_COOKIE_SECURE must be true when AUTH_COOKIE_SAMESITE=none. "
                "Browsers reject SameSite=None cookies without the Secure flag."
            )
            raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "This application uses credentials (cookies) which are "
                "incompatible with wildcard CORS origins."
            )
            raise ValueError(msg)

        if self.environment == "production":
            if self.seed_demo_accounts:
                msg = "SEED_DEMO_ACCOUNTS must be false in production."
                raise ValueError(msg)

            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            secret_value = self.auth_secret.get_secret_value()
            if len(secret_value) < _MIN_AUTH_SECRET_LENGTH:
                msg = (
                    f"AUTH_SECRET must be at least {_MIN_AUTH_SECRET_LENGTH} "
                    "characters in production. "
                    'Generate with: python -c "import secrets; '
                    'print(secrets.token_hex(32))"'
                )
                raise ValueError(msg)

        return self


settings = Settings()
