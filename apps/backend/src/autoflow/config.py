from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Direct Anthropic API
    anthropic_api_key: Optional[str] = None

    # ------------------------------------------------------------------
    # Model routing
    # ------------------------------------------------------------------
    # "simple" plans use the cheap tier, "complex" plans the capable one.
    simple_model: str = "claude-3-5-sonnet"
    complex_model: str = "claude-3-7-sonnet"
    planner_model: str = "claude-3-5-sonnet"
    completion_timeout_seconds: float = 45.0

    # ------------------------------------------------------------------
    # Capability discovery service (JSON-RPC over HTTP)
    # ------------------------------------------------------------------
    discovery_url: Optional[str] = None     # https://discovery.internal
    discovery_token: Optional[str] = None   # Bearer token
    discovery_timeout_seconds: float = 10.0

    # Disable the AI-assisted generation path entirely
    ai_assist_enabled: bool = True

    # ------------------------------------------------------------------
    # Cost monitoring (advisory, USD)
    # ------------------------------------------------------------------
    daily_cost_budget: float = 10.0
    single_call_limit: float = 1.0
    cost_log_capacity: int = 100

    # Where generated artifacts are written
    data_dir: Path = Path("data")

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def discovery_configured(self) -> bool:
        return bool(self.discovery_url and self.discovery_token)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
