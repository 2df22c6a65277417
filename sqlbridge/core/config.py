from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL
from typing import List


def _csv(raw: str) -> List[str]:
    return [item.strip() for item in str(raw or "").split(",") if item.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "sqlbridge"
    LOG_LEVEL: str = "INFO"

    # Either a full SQLAlchemy URL or the discrete DB_* parts below.
    DATABASE_URL: str = ""
    DB_USER: str = "postgres"
    DB_PASSWORD: str = "postgres"
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "postgres"
    DB_SCHEMA: str = ""
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    CORS_ORIGINS: str = "*"

    TABLES_ALLOWLIST: str = ""
    TABLES_DENYLIST: str = ""
    PASSWORD_COLUMNS: str = "password"
    TRANSACTION_MAX_OPERATIONS: int = 100

    JWT_SECRET: str = "change_me_jwt"
    JWT_TTL_MINUTES: int = 240
    API_AUTH_REQUIRED: bool = False
    AUTH_USERS_TABLE: str = "users"
    AUTH_LOGIN_COLUMN: str = "login"
    AUTH_PASSWORD_COLUMN: str = "password"
    LOGIN_RATE_LIMIT: int = 10
    LOGIN_RATE_LIMIT_WINDOW_SECONDS: int = 300

    REDIS_URL: str = "redis://localhost:6379/0"
    RESPONSE_CACHE_ENABLED: bool = False
    RESPONSE_CACHE_BACKEND: str = "memory"  # memory | redis
    RESPONSE_CACHE_TTL_SECONDS: int = 30

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return URL.create(
            "postgresql+psycopg",
            username=self.DB_USER,
            password=self.DB_PASSWORD,
            host=self.DB_HOST,
            port=self.DB_PORT,
            database=self.DB_NAME,
        ).render_as_string(hide_password=False)

    @property
    def db_schema(self) -> str | None:
        return self.DB_SCHEMA.strip() or None

    @property
    def cors_origins_list(self) -> List[str]:
        return _csv(self.CORS_ORIGINS)

    @property
    def tables_allowlist(self) -> set[str]:
        return set(_csv(self.TABLES_ALLOWLIST))

    @property
    def tables_denylist(self) -> set[str]:
        return set(_csv(self.TABLES_DENYLIST))

    @property
    def password_columns(self) -> set[str]:
        return set(_csv(self.PASSWORD_COLUMNS))

settings = Settings()
