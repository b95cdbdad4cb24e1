import os
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    DATABASE_URL: str             = os.getenv("DATABASE_URL", "")
    CREATORBOOK_DB_USER: str      = os.getenv("CREATORBOOK_DB_USER", "")
    CREATORBOOK_DB_PASSWORD: str  = os.getenv("CREATORBOOK_DB_PASSWORD", "")
    CREATORBOOK_DB_NAME: str      = os.getenv("CREATORBOOK_DB_NAME", "")
    CREATORBOOK_DB_HOST: str      = os.getenv("CREATORBOOK_DB_HOST", "")
    CREATORBOOK_DB_PORT: int      = int(os.getenv("CREATORBOOK_DB_PORT", "5432"))
    DB_ECHO: bool                 = False

    RABBIT_USER: str              = os.getenv("RABBIT_USER", "")
    RABBIT_PASSWORD: str          = os.getenv("RABBIT_PASSWORD", "")
    RABBIT_HOST: str              = os.getenv("RABBIT_HOST", "")
    RABBIT_PORT: int              = int(os.getenv("RABBIT_PORT", "5672"))

    OUTBOX_ENABLED: bool          = True
    OUTBOX_POLL_INTERVAL: int     = int(os.getenv("OUTBOX_POLL_INTERVAL", "1"))
    OUTBOX_BATCH_SIZE: int        = int(os.getenv("OUTBOX_BATCH_SIZE", "100"))

    TX_RETRY_ATTEMPTS: int        = 3
    TX_RETRY_BACKOFF: float       = 0.05
    REQUEST_TIMEOUT: float        = 10.0

    DEMO_TOPUP_ENABLED: bool      = True
    DEMO_TOPUP_MAX: int           = 10_000
    MESSAGE_PAGE_LIMIT: int       = 200

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://"
            f"{self.CREATORBOOK_DB_USER}:"
            f"{self.CREATORBOOK_DB_PASSWORD}"
            f"@{self.CREATORBOOK_DB_HOST}:"
            f"{self.CREATORBOOK_DB_PORT}/"
            f"{self.CREATORBOOK_DB_NAME}"
        )

    @property
    def rabbit_url(self) -> str:
        return f"amqp://{self.RABBIT_USER}:{self.RABBIT_PASSWORD}@{self.RABBIT_HOST}:{self.RABBIT_PORT}/"

settings = Settings()
