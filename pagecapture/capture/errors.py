"""Exception taxonomy for capture, progress and scheduling operations."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Failure kinds carried by a ``failed`` task state."""

    INVALID_REQUEST = "invalid_request"
    NAVIGATION_TIMEOUT = "navigation_timeout"
    SELECTOR_TIMEOUT = "selector_timeout"
    ELEMENT_NOT_FOUND = "element_not_found"
    INTERACTION_TIMEOUT = "interaction_timeout"
    DELEGATE_ERROR = "delegate_error"


class CaptureServiceError(Exception):
    """Base class for every error raised by the service core."""


class CaptureError(CaptureServiceError):
    """A capture run failed in a specific phase."""

    kind: ErrorKind = ErrorKind.DELEGATE_ERROR

    def __init__(self, message: str, phase: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.phase = phase


class InvalidRequest(CaptureError):
    kind = ErrorKind.INVALID_REQUEST


class NavigationTimeout(CaptureError):
    kind = ErrorKind.NAVIGATION_TIMEOUT


class SelectorTimeout(CaptureError):
    kind = ErrorKind.SELECTOR_TIMEOUT


class ElementNotFound(CaptureError):
    kind = ErrorKind.ELEMENT_NOT_FOUND


class InteractionTimeout(CaptureError):
    """A click or hover exceeded its bound.

    Kept in the taxonomy for reporting; the executor logs interaction
    timeouts and carries on, so a run never fails with this kind.
    """

    kind = ErrorKind.INTERACTION_TIMEOUT


class DelegateError(CaptureError):
    kind = ErrorKind.DELEGATE_ERROR


class ChannelError(CaptureServiceError):
    """Base class for progress channel misuse."""

    def __init__(self, task_id: str, message: str) -> None:
        super().__init__(f"{message}: {task_id}")
        self.task_id = task_id


class DuplicateTaskId(ChannelError):
    def __init__(self, task_id: str) -> None:
        super().__init__(task_id, "channel already open")


class UnknownTaskId(ChannelError):
    def __init__(self, task_id: str) -> None:
        super().__init__(task_id, "no channel for task")


class ChannelClosed(ChannelError):
    def __init__(self, task_id: str) -> None:
        super().__init__(task_id, "channel closed")


class InvalidSchedule(CaptureServiceError, ValueError):
    """The cron expression of a scheduled task does not validate."""

    def __init__(self, expression: str) -> None:
        super().__init__(f"Invalid cron expression: {expression!r}")
        self.expression = expression
