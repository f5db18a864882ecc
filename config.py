"""
Configuration for the MTR workflow orchestrator.

GOVERNANCE:
- No clinical validation thresholds live here
- Pharmacist identity is supplied by the host, never inferred
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Reference review service
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Persistence gateway
    api_base_url: str = "http://localhost:8000"
    http_timeout_seconds: float = 30.0
    gateway_timeout_seconds: Optional[float] = 60.0

    # Demo settings
    demo_pharmacist_id: str = "demo_pharmacist"

    # Autosave
    autosave_interval_seconds: float = 30.0
    teardown_grace_seconds: float = 2.0

    log_level: str = "INFO"

    model_config = {"env_prefix": "MTR_WORKFLOW_"}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
