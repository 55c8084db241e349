from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    clickup_api_key: str = ""
    clickup_team_id: str = ""
    clickup_base_url: str = "https://api.clickup.com/api/v2"
    http_timeout_seconds: float = 30.0
    database_url: str = "sqlite:///./lighthouse.db"

    # Empty list = monitor every team member
    members_to_monitor: List[str] = []

    # Polling
    poll_interval_ms: int = 30000
    debounce_ms: int = 300
    initial_sync_delay_ms: int = 1000

    # Pagination / rate limiting (ClickUp allows ~100 requests/minute)
    page_delay_ms: int = 150
    max_task_pages: int = 20
    historical_max_pages: int = 100
    historical_page_delay_ms: int = 600
    backfill_stale_days: int = 7
    history_days: int = 90

    # Status thresholds
    break_minutes: int = 15
    break_gap_minutes: int = 5
    daily_target_hours: float = 6.5
    weekend_days: List[int] = [4, 5]  # Friday, Saturday (Monday=0)
    work_start_hour: int = 8
    work_end_hour: int = 18

    # Score weights (sum to 1.0)
    score_weight_tracked: float = 0.40
    score_weight_tasks: float = 0.20
    score_weight_done: float = 0.30
    score_weight_compliance: float = 0.10

    # Team task baseline (avg tasks per member per day over history_days)
    baseline_refresh_hours: int = 24

    # Leave / WFH lists; empty disables the leave sync
    leave_list_id: str = ""
    wfh_list_id: str = ""
    leave_sync_hours: int = 24

    # Offline queue
    max_replay_attempts: int = 3
    failed_operation_retention_days: int = 7

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
