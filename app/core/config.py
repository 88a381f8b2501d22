from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")
    environment: str = Field("development", alias="ENVIRONMENT")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Per-school lifecycle lock. An expired lease can be taken over by another worker.
    lifecycle_lock_lease_seconds: int = Field(600, alias="LIFECYCLE_LOCK_LEASE_SECONDS")
    # Decision rows are flushed in chunks of this size inside the single commit transaction.
    promotion_flush_batch_size: int = Field(500, alias="PROMOTION_FLUSH_BATCH_SIZE")
    audit_page_max: int = Field(100, alias="AUDIT_PAGE_MAX")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
