"""Cron evaluation backed by croniter."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol

from croniter import croniter


class CronEvaluator(Protocol):
    def is_valid(self, expression: str) -> bool: ...

    def next_fire_time(self, expression: str, start: datetime) -> datetime: ...


def is_valid_schedule(expression: str) -> bool:
    """Accept standard five-field expressions only."""
    if not isinstance(expression, str) or len(expression.split()) != 5:
        return False
    return croniter.is_valid(expression)


def next_fire_time(expression: str, start: datetime) -> datetime:
    """First fire time strictly after *start*, in UTC."""
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    return croniter(expression, start.astimezone(timezone.utc)).get_next(datetime)


class Croniter:
    """Default ``CronEvaluator``."""

    def is_valid(self, expression: str) -> bool:
        return is_valid_schedule(expression)

    def next_fire_time(self, expression: str, start: datetime) -> datetime:
        return next_fire_time(expression, start)
