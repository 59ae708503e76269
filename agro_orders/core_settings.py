from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from decimal import Decimal
from typing import Optional

class Settings(BaseSettings):
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "agro"
    POSTGRES_USER: str = "agro"
    POSTGRES_PASSWORD: str = "agro"
    # Full SQLAlchemy URL; takes precedence over the POSTGRES_* parts when set
    DATABASE_URL: Optional[str] = None

    # Collaborator services
    CATALOG_SERVICE_URL: str = "http://products:8000"
    PAYMENTS_SERVICE_URL: str = "http://payments:8000"
    UPSTREAM_TIMEOUT_SECONDS: float = 5.0

    # Identity tokens are issued by the gateway
    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"

    # Pricing
    TAX_RATE: Decimal = Decimal("0.10")
    SHIPPING_BASE_COST: Decimal = Decimal("50.00")
    FREE_SHIPPING_THRESHOLD: Decimal = Decimal("1000.00")
    REMOTE_SHIPPING_SURCHARGE: Decimal = Decimal("25.00")
    DELIVERY_DAYS: int = 5

    TRACKING_URL_TEMPLATE: str = "https://track.agro.example/{tracking_number}"

    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 100

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

@lru_cache
def get_settings() -> Settings:
    return Settings()
