from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Message board settings.

    Every field can be set through an environment variable of the same
    name; a local .env file fills in whatever the environment leaves out.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # SQLite file holding the messages table
    DATABASE_URL: str = "sqlite:///./messages.db"

    LOG_LEVEL: str = "INFO"

    # Shown for posts without a usable nickname
    DEFAULT_NICKNAME: str = "匿名用户"
    # Fill an empty board with a few sample posts at startup
    SEED_SAMPLE_DATA: bool = True

    # Take the poster's address from X-Forwarded-For
    TRUST_PROXY: bool = True

    CORS_ORIGINS: list[str] = ["*"]


@lru_cache()
def get_settings() -> Settings:
    """Settings are read once per process; tests clear the cache to reload."""
    return Settings()


settings = get_settings()
