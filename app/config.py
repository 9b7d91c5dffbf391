"""Configuration management for the chain gateway."""

from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


DEFAULT_RPC_URL = "https://endpoints.omniatech.io/v1/eth/sepolia/public"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Chain node
    rpc_url: str = DEFAULT_RPC_URL

    # Expected chain id. When set, transactions declaring another chain id
    # are rejected during sender recovery.
    chain_id: Optional[int] = None

    # Upper bound (seconds) for every upstream call
    request_timeout: float = 10.0

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
