"""
Application Configuration
"""

from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    database_url: Optional[str] = None

    # Redis & Job Queue
    redis_url: Optional[str] = None

    # Environment
    environment: str = "development"

    # Scheduler
    scheduler_timezone: str = "America/Chicago"

    # Eligibility gates
    eligible_pivot_statuses: List[str] = ["Active", "Needs Placement"]
    eligible_preference_statuses: List[str] = ["Active"]
    accepted_license_statuses: List[str] = ["Active"]
    accepted_background_check_statuses: List[str] = ["Approved", "Cleared"]
    accepted_training_statuses: List[str] = ["Complete", "Completed"]
    # Cheap candidate pre-filter: terminal license states never worth scoring.
    # Expired/pending families are still scored so caseworkers see why they are excluded.
    prefilter_excluded_license_statuses: List[str] = ["Revoked", "Closed", "Withdrawn"]

    # Scoring
    # Observed behaviour leaves the overall score unclamped (can read 110 or -5)
    clamp_overall_score: bool = False

    # Recalculation
    recalculation_delay_seconds: int = 60  # debounce window for record-change triggers
    batch_chunk_size: int = 50  # pivots per chunk (one session per chunk)
    batch_watchdog_timeout_seconds: int = 1800  # stuck "running" runs are forced terminal
    nightly_recalculation_hour: int = 2
    result_history_retention_days: int = 90

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
