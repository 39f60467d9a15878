"""
Configuration for the Compute Ops job executor.

Reads from environment variables with sensible defaults.
"""

import logging
import os
from typing import Optional

from pydantic_settings import BaseSettings

# Region the API host is derived from (e.g. us-west, eu-central, ap-northeast)
COM_REGION = os.getenv("COM_REGION", "us-west")

# Job polling defaults (seconds)
DEFAULT_WAIT_TIMEOUT = 300
DEFAULT_POLL_INTERVAL = 5

# Delay between a successful collection job and the retried read
COLLECTION_SETTLE_DELAY = 5

# Per-member ceiling used for group firmware updates when the caller gives none
GROUP_MEMBER_TIMEOUT = 3600

# Schedule window bounds (seconds)
SCHEDULE_MAX_LEAD = 365 * 24 * 3600
SCHEDULE_MIN_INTERVAL = 15 * 60
SCHEDULE_MAX_INTERVAL = 365 * 24 * 3600

# SSL verification
VERIFY_SSL = os.getenv("COM_VERIFY_SSL", "true").lower() == "true"


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    region: str = COM_REGION
    # Bearer token obtained by the caller's authentication layer
    access_token: str = ""
    base_url: Optional[str] = None
    verify_ssl: bool = VERIFY_SSL

    # HTTP
    connect_timeout: int = 5
    read_timeout: int = 30

    # Circuit breaker
    circuit_breaker_threshold: int = 5
    circuit_breaker_timeout: int = 300

    # Orchestration
    wait_timeout: int = DEFAULT_WAIT_TIMEOUT
    poll_interval: int = DEFAULT_POLL_INTERVAL
    collection_settle_delay: int = COLLECTION_SETTLE_DELAY
    group_member_timeout: int = GROUP_MEMBER_TIMEOUT

    # Logging
    log_level: str = "INFO"

    class Config:
        env_prefix = "COM_"


settings = Settings()


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """Attach a stream handler to the package logger once."""
    logger = logging.getLogger("compute_executor")
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel((level or settings.log_level).upper())
    return logger
