"""Scheduler job and source schemas."""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel


class JobStatsResponse(BaseModel):
    total_runs: int
    successful_runs: int
    failed_runs: int
    last_error: Optional[str] = None
    avg_run_time_ms: float
    source_errors: Dict[str, str] = {}


class JobResponse(BaseModel):
    name: str
    interval_minutes: float
    enabled: bool
    running: bool
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    stats: JobStatsResponse


class JobTriggerResponse(BaseModel):
    name: str
    triggered: bool


class SourceResponse(BaseModel):
    name: str
    kind: str
    enabled: bool
    poll_interval_minutes: float
    min_interval_seconds: float
    last_polled: Optional[datetime] = None
    last_success: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_kind: Optional[str] = None
    consecutive_failures: int = 0
