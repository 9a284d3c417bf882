"""Per-task progress channels with replay-last subscription semantics."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from .errors import ChannelClosed, DuplicateTaskId, UnknownTaskId
from .models import Completed, Failed, Processing, Starting, is_terminal

logger = logging.getLogger(__name__)

State = Starting | Processing | Completed | Failed


class ProgressChannel:
    """Ordered event log for one task id.

    Writers append through :meth:`ProgressHub.publish`; any number of readers
    iterate from the latest event onwards. A terminal event closes the
    channel for writing.
    """

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        self.events: list[State] = []
        self.terminal: Completed | Failed | None = None
        self.closed = False
        self._changed = asyncio.Condition()

    @property
    def latest(self) -> State | None:
        return self.events[-1] if self.events else None

    async def append(self, state: State) -> None:
        if self.closed or self.terminal is not None:
            raise ChannelClosed(self.task_id)
        previous = self.latest
        if (
            isinstance(state, Processing)
            and isinstance(previous, Processing)
            and state.percent < previous.percent
        ):
            raise ValueError(
                f"progress went backwards for {self.task_id}: "
                f"{previous.percent} -> {state.percent}"
            )
        async with self._changed:
            self.events.append(state)
            if is_terminal(state):
                self.terminal = state  # type: ignore[assignment]
            self._changed.notify_all()

    async def mark_closed(self) -> None:
        async with self._changed:
            self.closed = True
            self._changed.notify_all()

    async def iterate(self) -> AsyncIterator[State]:
        if self.terminal is not None:
            yield self.terminal
            return

        cursor = max(len(self.events) - 1, 0)
        while True:
            async with self._changed:
                await self._changed.wait_for(
                    lambda: cursor < len(self.events) or self.closed
                )
                pending = self.events[cursor:]
                cursor = len(self.events)
                closed = self.closed

            for state in pending:
                yield state
                if is_terminal(state):
                    return
            if closed and cursor >= len(self.events):
                # Closed without a terminal event: the run was cancelled.
                return


class ProgressHub:
    """Registry of progress channels keyed by task id."""

    def __init__(self, retention_seconds: float = 300.0) -> None:
        self._channels: dict[str, ProgressChannel] = {}
        self._retention_seconds = retention_seconds
        self._reclaimers: dict[str, asyncio.TimerHandle] = {}

    def open(self, task_id: str) -> ProgressChannel:
        if task_id in self._channels:
            raise DuplicateTaskId(task_id)
        channel = ProgressChannel(task_id)
        self._channels[task_id] = channel
        logger.debug("progress channel opened", extra={"task_id": task_id})
        return channel

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._channels

    def get(self, task_id: str) -> ProgressChannel:
        try:
            return self._channels[task_id]
        except KeyError:
            raise UnknownTaskId(task_id) from None

    async def publish(self, task_id: str, state: State) -> None:
        """Append *state*; raises ``ChannelClosed`` once the channel is final."""
        await self.get(task_id).append(state)

    def subscribe(self, task_id: str) -> AsyncIterator[State]:
        """Return an iterator over the latest event and everything after it.

        Raises ``UnknownTaskId`` immediately rather than on first iteration.
        """
        return self.get(task_id).iterate()

    def latest(self, task_id: str) -> State | None:
        return self.get(task_id).latest

    async def close(self, task_id: str) -> None:
        """Stop accepting events and schedule reclamation. Idempotent."""
        channel = self.get(task_id)
        if channel.closed:
            return
        await channel.mark_closed()
        logger.debug(
            "progress channel closed",
            extra={"task_id": task_id, "terminal": channel.terminal is not None},
        )
        if self._retention_seconds <= 0:
            self.reclaim(task_id)
            return
        loop = asyncio.get_running_loop()
        self._reclaimers[task_id] = loop.call_later(
            self._retention_seconds, self.reclaim, task_id
        )

    def reclaim(self, task_id: str) -> None:
        """Forget a closed channel; later lookups raise ``UnknownTaskId``."""
        handle = self._reclaimers.pop(task_id, None)
        if handle is not None:
            handle.cancel()
        if self._channels.pop(task_id, None) is not None:
            logger.debug("progress channel reclaimed", extra={"task_id": task_id})

    def shutdown(self) -> None:
        for handle in self._reclaimers.values():
            handle.cancel()
        self._reclaimers.clear()
        self._channels.clear()
