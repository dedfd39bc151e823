"""Centralized settings for the back-office engine.

Uses pydantic-settings to load from environment variables (prefixed
BACKOFFICE_) with defaults matching the operations desk's policy.
"""

from datetime import time
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    # --- Position matching ---
    reference_source: str = "CSCS"
    comparison_source: str = "NGX"
    match_tolerance_pct: float = 0.01  # |variance| <= 1% of reference is a match
    high_severity_pct: float = 0.05  # |qty variance| > 5% of reference is high

    # --- Cutoff sweep ---
    cutoff_grace_hours: float = 6.0
    daily_cutoff: time = time(16, 0)

    # --- Exception SLA ---
    sla_critical_minutes: int = 60
    sla_high_minutes: int = 120
    sla_default_minutes: int = 240
    escalation_threshold_minutes: int = 15
    triage_owner: str = "Ops Triage"

    # --- Periodic tasks (seconds) ---
    sla_tick_interval: float = 15.0
    sweep_interval: float = 30.0
    feed_refresh_interval: float = 60.0
    enable_background_tasks: bool = False

    # --- Upstream feeds ---
    feed_base_url: str = ""
    feed_timeout_seconds: float = 10.0

    # --- Audit ---
    audit_buffer_size: int = 100

    model_config = {
        "env_prefix": "BACKOFFICE_",
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()
