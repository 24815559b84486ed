from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "wholesale"
    POSTGRES_USER: str = "wholesale"
    POSTGRES_PASSWORD: str = "wholesale"
    # Full SQLAlchemy URL; overrides the POSTGRES_* parts when set
    DATABASE_URL: Optional[str] = None

    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"

    # Transactional email (Resend-compatible HTTP API)
    EMAIL_API_URL: str = "https://api.resend.com/emails"
    EMAIL_API_KEY: Optional[str] = None
    EMAIL_FROM: str = "GatorBudz <onboarding@resend.dev>"
    EMAIL_TIMEOUT_SECONDS: float = 10.0
    STOREFRONT_URL: str = "http://localhost:3000"

    INVOICE_PAYMENT_TERM_DAYS: int = 15
    ACCEPT_LEGACY_ORDER_PAYLOADS: bool = True

    PRODUCT_CACHE_TTL: int = 60
    PRODUCT_CACHE_SIZE: int = 256
    REDIS_URL: Optional[str] = None

    SERVICE_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"
    RUN_MIGRATIONS: bool = False

    class Config:
        env_file = ".env"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

@lru_cache
def get_settings() -> Settings:
    return Settings()
