from enum import Enum
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Env(Enum):
    local = "local"
    dev = "dev"
    prod = "prod"


class Config(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RECIPES_")

    env: Env = Env.local
    db_url: str = "sqlite+aiosqlite:///recipes.db"
    media_dir: Path = Path("media")
    staging_dir: Path = Path("media/.staging")
    intents_dir: Path = Path("media/.intents")
    secret_key: str = "change-me"
    allowed_media: str = r"image/(jpeg|png)"
    max_upload_bytes: int = 10 * 1024 * 1024
    # Seconds a single store write or delete may take.
    store_timeout: float = 10.0
    log_level: str = "INFO"
