"""Scheduled task definitions, notification targets and events."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from pagecapture.capture.models import CaptureRequest
from pagecapture.config import Settings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"


class WebhookTarget(BaseModel):
    url: str
    headers: dict[str, str] = {}


class EmailTarget(BaseModel):
    to: list[str]
    subject: str | None = None
    template: str | None = None


class NotificationSettings(BaseModel):
    webhook: WebhookTarget | None = None
    email: EmailTarget | None = None


class ScheduledTaskCreate(BaseModel):
    """What a caller supplies to define a recurring capture."""

    request: CaptureRequest
    schedule: str = Field(description="Five-field cron expression, evaluated in UTC")
    notifications: NotificationSettings = NotificationSettings()


class ScheduledTask(BaseModel):
    id: str
    request: CaptureRequest
    schedule: str
    notifications: NotificationSettings = NotificationSettings()
    status: TaskStatus = TaskStatus.ACTIVE
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    run_count: int = 0
    failure_count: int = 0
    last_error: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def url(self) -> str:
        return self.request.url

    def touch(self) -> None:
        self.updated_at = _utcnow()


class NotificationEvent(BaseModel):
    type: Literal["success", "error", "progress"]
    task_id: str
    url: str
    timestamp: datetime = Field(default_factory=_utcnow)
    data: dict[str, Any] = {}
    error: str | None = None


@dataclass(frozen=True)
class SchedulerConfig:
    """Scheduler knobs; retry delays are in milliseconds."""

    enabled: bool = True
    max_concurrent: int = 5
    retry_attempts: int = 3
    retry_delay_ms: int = 5000
    retry_backoff: float = 1.0
    retry_max_delay_ms: int = 300_000

    @classmethod
    def from_settings(cls, settings: Settings) -> SchedulerConfig:
        return cls(
            enabled=settings.scheduler_enabled,
            max_concurrent=settings.scheduler_max_concurrent,
            retry_attempts=settings.scheduler_retry_attempts,
            retry_delay_ms=settings.scheduler_retry_delay_ms,
            retry_backoff=settings.scheduler_retry_backoff,
            retry_max_delay_ms=settings.scheduler_retry_max_delay_ms,
        )

    def retry_delay(self, attempt: int) -> float:
        """Seconds to wait after failed *attempt* (1-based) before the next one."""
        delay_ms = self.retry_delay_ms * (self.retry_backoff ** (attempt - 1))
        return min(delay_ms, self.retry_max_delay_ms) / 1000
