"""Capture requests, results and the task state machine payloads."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Mapping, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from .errors import CaptureError, ErrorKind, InvalidRequest


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Viewport(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int = Field(gt=0)
    height: int = Field(gt=0)
    scale_factor: float = Field(default=1.0, gt=0)
    is_mobile: bool = False


class BeforeCapture(BaseModel):
    """Interactions applied after navigation and before the screenshot."""

    model_config = ConfigDict(frozen=True)

    click: tuple[str, ...] = ()
    hover: tuple[str, ...] = ()
    wait_ms: int = Field(default=0, ge=0)

    @property
    def has_entries(self) -> bool:
        return bool(self.click or self.hover or self.wait_ms)


class Authentication(BaseModel):
    model_config = ConfigDict(frozen=True)

    login_url: str | None = None
    username: str | None = None
    password: str | None = None
    login_selector: str | None = None


class CaptureRequest(BaseModel):
    """A single page capture. Immutable once submitted."""

    model_config = ConfigDict(frozen=True)

    url: str
    viewport: Viewport
    delay_seconds: int = Field(default=0, ge=0)
    full_page: bool = False
    selector: str | None = None
    wait_for_selector: str | None = None
    scroll_to_element: bool = False
    hide_ads: bool = False
    hide_cookie_banners: bool = False
    before_capture: BeforeCapture | None = None
    authentication: Authentication | None = None

    @field_validator("url")
    @classmethod
    def _absolute_url(cls, value: str) -> str:
        value = value.strip()
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("url must be an absolute http(s) URL")
        return value


def parse_request(data: CaptureRequest | Mapping[str, Any]) -> CaptureRequest:
    """Validate raw request data, raising ``InvalidRequest`` on malformed input."""
    if isinstance(data, CaptureRequest):
        return data
    try:
        return CaptureRequest.model_validate(data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
            for err in exc.errors()
        )
        raise InvalidRequest(problems) from exc


class Size(BaseModel):
    width: int
    height: int


class CaptureResult(BaseModel):
    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    image_data: bytes
    captured_at: datetime = Field(default_factory=_utcnow)
    source_url: str
    viewport: Size
    section_index: int | None = None
    total_sections: int | None = None


class TaskError(BaseModel):
    kind: ErrorKind
    message: str
    phase: str | None = None

    @classmethod
    def from_exception(cls, exc: CaptureError) -> TaskError:
        return cls(kind=exc.kind, message=exc.message, phase=exc.phase)


class BatchItem(BaseModel):
    """Outcome of one slot of a batch, aligned with the submitted order."""

    index: int
    url: str
    results: list[CaptureResult] | None = None
    error: TaskError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Starting(BaseModel):
    status: Literal["starting"] = "starting"
    percent: int = 0
    message: str = ""


class Processing(BaseModel):
    status: Literal["processing"] = "processing"
    percent: int = Field(ge=0, le=100)
    phase: str | None = None
    message: str = ""
    current_url: str | None = None
    completed_count: int | None = None
    total_count: int | None = None


class Completed(BaseModel):
    status: Literal["completed"] = "completed"
    percent: int = 100
    message: str = ""
    results: list[CaptureResult] = []
    items: list[BatchItem] | None = None


class Failed(BaseModel):
    status: Literal["failed"] = "failed"
    error: TaskError


TaskState = Annotated[
    Union[Starting, Processing, Completed, Failed],
    Field(discriminator="status"),
]

task_state_adapter: TypeAdapter[TaskState] = TypeAdapter(TaskState)

TERMINAL_STATUSES = frozenset({"completed", "failed"})


def is_terminal(state: Starting | Processing | Completed | Failed) -> bool:
    return state.status in TERMINAL_STATUSES
