from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    SERVICE_NAME: str = "scanner-service"
    SERVICE_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "stock"
    POSTGRES_USER: str = "stock"
    POSTGRES_PASSWORD: str = "stock"
    # Full URL override, e.g. sqlite:///./stockscan.db for local runs
    DATABASE_URL: Optional[str] = None

    RUN_MIGRATIONS: bool = True
    CORS_ALLOW_ORIGINS: list[str] = ["*"]

    CHANGE_FEED_QUEUE_SIZE: int = 100
    MOVEMENTS_PAGE_LIMIT: int = 100

    class Config:
        env_file = ".env"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            # Hosted Postgres providers hand out postgres:// URLs
            if self.DATABASE_URL.startswith("postgres://"):
                return self.DATABASE_URL.replace("postgres://", "postgresql://", 1)
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
