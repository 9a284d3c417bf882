"""Capture submodule: request models, progress channels, executor and batches."""

from __future__ import annotations

from .batch import BatchCoordinator
from .engine import PageSession, PlaywrightEngine, RenderEngine
from .errors import (
    CaptureError,
    CaptureServiceError,
    ChannelClosed,
    DelegateError,
    DuplicateTaskId,
    ElementNotFound,
    ErrorKind,
    InteractionTimeout,
    InvalidRequest,
    InvalidSchedule,
    NavigationTimeout,
    SelectorTimeout,
    UnknownTaskId,
)
from .executor import PHASE_PERCENT, CaptureExecutor
from .models import (
    Authentication,
    BatchItem,
    BeforeCapture,
    CaptureRequest,
    CaptureResult,
    Completed,
    Failed,
    Processing,
    Starting,
    TaskError,
    TaskState,
    Viewport,
    is_terminal,
    parse_request,
    task_state_adapter,
)
from .progress import ProgressChannel, ProgressHub

__all__ = [
    "PHASE_PERCENT",
    "Authentication",
    "BatchCoordinator",
    "BatchItem",
    "BeforeCapture",
    "CaptureError",
    "CaptureExecutor",
    "CaptureRequest",
    "CaptureResult",
    "CaptureServiceError",
    "ChannelClosed",
    "Completed",
    "DelegateError",
    "DuplicateTaskId",
    "ElementNotFound",
    "ErrorKind",
    "Failed",
    "InteractionTimeout",
    "InvalidRequest",
    "InvalidSchedule",
    "NavigationTimeout",
    "PageSession",
    "PlaywrightEngine",
    "Processing",
    "ProgressChannel",
    "ProgressHub",
    "RenderEngine",
    "SelectorTimeout",
    "Starting",
    "TaskError",
    "TaskState",
    "UnknownTaskId",
    "Viewport",
    "is_terminal",
    "parse_request",
    "task_state_adapter",
]
