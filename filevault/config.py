from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./filevault.db"
    STORAGE_ROOT: Path = Path("./storage")
    HOST: str = "0.0.0.0"
    PORT: int = 3000

    JWT_SECRET: str
    ACCESS_TOKEN_EXPIRE_HOURS: int = 24

    MAX_UPLOAD_BYTES: int = 100 * 1024 * 1024
    STATS_REFRESH_MS: int = 500

    # argon2 cost knobs; memory cost is in KiB
    ARGON2_TIME_COST: int = 3
    ARGON2_MEMORY_COST: int = 65536
    ARGON2_PARALLELISM: int = 4

    LOG_LEVEL: str = "INFO"

    @property
    def stats_refresh_seconds(self) -> float:
        return self.STATS_REFRESH_MS / 1000

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
