import os
import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class Settings(BaseSettings):
    """Runtime settings, read from the environment (and `.env` when present)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: Optional[str] = Field(default=None, description="MongoDB connection URL")
    database_name: str = Field(default="pretty_drive")

    # Blob storage
    upload_dir: str = Field(default_factory=lambda: os.path.join(os.getcwd(), "uploads"))
    signed_url_ttl: int = Field(default=3600, description="Download link lifetime in seconds")
    max_upload_bytes: int = Field(default=100 * 1024 * 1024)
    public_base_url: str = Field(default="http://localhost:8000")

    # JWT
    jwt_secret: str = Field(default="change_me")
    jwt_algorithm: str = Field(default="HS256")
    blob_token_audience: str = Field(default="pretty-drive-blob")

    # Server
    cors_origins: str = Field(default="*")
    log_level: str = Field(default="INFO")
    port: int = Field(default=8000)

    def get_cors_origins(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    return Settings()


def setup_logging(level: Optional[str] = None):
    level = (level or get_settings().log_level).upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
    if get_settings().jwt_secret == "change_me":
        logging.getLogger(__name__).warning(
            "JWT secret is using the default value. Please configure JWT_SECRET."
        )
