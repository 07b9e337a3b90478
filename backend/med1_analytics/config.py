from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices


class Settings(BaseSettings):
    """Application configuration using Pydantic v2 settings.

    - Parses comma-separated CORS origins into a list
    - Reads environment from APP_ENV or ENVIRONMENT
    - Ignores unknown env keys
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Med1 Analytics API"
    environment: str = Field(default="dev", validation_alias=AliasChoices("APP_ENV", "ENVIRONMENT"))

    # CORS (comma-separated string)
    cors_origins: str = Field(default="http://localhost:3000,http://127.0.0.1:3000")

    # Fact store (SQLite for dev, Postgres in production)
    database_url: str = Field(
        default="sqlite:///.data/med1.sqlite",
        validation_alias=AliasChoices("DATABASE_URL", "DATABASE_DSN"),
    )
    # Create FactEntry/ProductInfo/CostCenterInfo on startup (dev only; production schema is migrated externally)
    create_tables: bool = Field(default=False, validation_alias=AliasChoices("CREATE_TABLES"))

    log_level: str = Field(default="INFO", validation_alias=AliasChoices("LOG_LEVEL"))

    # Pivot paging
    pivot_default_page_size: int = Field(default=100, validation_alias=AliasChoices("PIVOT_DEFAULT_PAGE_SIZE"))
    pivot_max_page_size: int = Field(
        default=1000,
        validation_alias=AliasChoices("PIVOT_MAX_PAGE_SIZE"),
        description="Upper bound for pageSize; larger requests are rejected as invalid",
    )

    # Retry policy for fact-store round trips
    db_retry_attempts: int = Field(
        default=3,
        validation_alias=AliasChoices("DB_RETRY_ATTEMPTS"),
        description="Total attempts per query (first try included)",
    )
    db_retry_backoff_ms: int = Field(
        default=200,
        validation_alias=AliasChoices("DB_RETRY_BACKOFF_MS"),
        description="Linear backoff step between attempts (attempt * backoff)",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        return [x.strip() for x in str(self.cors_origins).split(",") if x.strip()]

    @property
    def is_production(self) -> bool:
        return str(self.environment or "").strip().lower() in {"prod", "production"}


settings = Settings()
