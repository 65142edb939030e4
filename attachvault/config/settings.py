"""
Application Settings.

All configuration comes from .env / environment variables.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Settings loaded from environment variables."""

    # --- App ---
    env: str = "development"
    debug: bool = True
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    # --- Database ---
    database_url: str = "sqlite:///attachvault.db"

    # --- Tokens ---
    secret_key: str = "change-me"
    token_algorithm: str = "HS256"
    session_ttl_seconds: int = 3600

    # --- Binary storage ---
    binary_backend: str = "local"  # local | minio
    binary_folder: str = "data/binaries"
    # model type -> attribute names, "*" wildcard on both sides
    binary_map: dict[str, list[str]] = {"*": ["*"]}
    # "model.attribute" entries holding one attachment instead of a collection
    binary_single_attributes: list[str] = []
    binary_expose_url: str = "/binary"
    binary_restrict_get: bool = False
    binary_restrict_create: bool = False
    binary_restrict_delete: bool = False
    binary_ticket_ttl_seconds: int = 60
    binary_download_ttl_seconds: int = 300
    binary_metadata_max_bytes: int = 4096
    binary_challenge_prefix: str = "ATTACHVAULT"

    # --- MinIO / S3 ---
    minio_endpoint: str = "localhost:9000"
    minio_access_key: str = "minioadmin"
    minio_secret_key: str = "minioadmin"
    minio_bucket: str = "attachments"
    minio_secure: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    """Settings singleton."""
    return Settings()
