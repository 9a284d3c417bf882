"""Service layer — runs captures and batches in the background for the API routes."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, AsyncGenerator, AsyncIterator, Awaitable, Callable, Mapping, Sequence

from pagecapture.cache.redis import RedisCache
from pagecapture.capture import (
    BatchCoordinator,
    CaptureExecutor,
    CaptureRequest,
    Completed,
    ErrorKind,
    Failed,
    ProgressHub,
    TaskError,
    is_terminal,
)
from pagecapture.capture.events import StateCallback
from pagecapture.capture.progress import State

logger = logging.getLogger(__name__)

Job = Callable[[StateCallback], Awaitable[Completed | Failed]]


def _generate_task_id() -> str:
    return uuid.uuid4().hex[:12]


async def _replay(state: State) -> AsyncIterator[State]:
    yield state


class CaptureService:
    """Starts single captures and batches, and tracks them until they finish.

    Each run publishes into its own progress channel. The terminal state is
    also written to the cache so it outlives the channel.
    """

    def __init__(
        self,
        executor: CaptureExecutor,
        hub: ProgressHub,
        cache: RedisCache,
        result_ttl_seconds: int = 3600,
    ) -> None:
        self._executor = executor
        self._batches = BatchCoordinator(executor)
        self._hub = hub
        self._cache = cache
        self._ttl = result_ttl_seconds
        self._running: dict[str, asyncio.Task] = {}

    def start_capture(self, request: CaptureRequest) -> str:
        task_id = _generate_task_id()
        logger.info("capture accepted", extra={"task_id": task_id, "url": request.url})
        self._launch(task_id, lambda on_state: self._executor.run(request, on_state))
        return task_id

    def start_batch(self, requests: Sequence[CaptureRequest | Mapping[str, Any]]) -> str:
        batch_id = _generate_task_id()
        logger.info("batch accepted", extra={"task_id": batch_id, "items": len(requests)})
        self._launch(batch_id, lambda on_state: self._batches.run(requests, on_state))
        return batch_id

    def _launch(self, task_id: str, job: Job) -> None:
        self._hub.open(task_id)

        async def on_state(state: State) -> None:
            await self._hub.publish(task_id, state)

        async def run() -> None:
            try:
                terminal = await job(on_state)
                await self._cache.set(task_id, terminal, ttl=self._ttl)
            except asyncio.CancelledError:
                logger.info("task cancelled", extra={"task_id": task_id})
                raise
            except Exception:
                logger.exception("task crashed", extra={"task_id": task_id})
                channel = self._hub.get(task_id)
                if channel.terminal is None and not channel.closed:
                    failed = Failed(error=TaskError(kind=ErrorKind.DELEGATE_ERROR, message="Capture failed"))
                    await self._hub.publish(task_id, failed)
                    await self._cache.set(task_id, failed, ttl=self._ttl)
            finally:
                try:
                    await self._hub.close(task_id)
                finally:
                    self._running.pop(task_id, None)

        self._running[task_id] = asyncio.create_task(run(), name=f"capture:{task_id}")

    def is_running(self, task_id: str) -> bool:
        return task_id in self._running

    async def cancel(self, task_id: str) -> bool:
        """Cancel an in-flight capture or batch; its channel closes without a terminal event."""
        task = self._running.get(task_id)
        if task is None:
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return True

    async def subscribe(self, task_id: str) -> AsyncIterator[State] | None:
        """Live states for a known channel, the cached outcome otherwise, or ``None``."""
        if task_id in self._hub:
            return self._hub.subscribe(task_id)
        cached = await self._cache.get(task_id)
        if cached is None:
            return None
        return _replay(cached)

    async def current_state(self, task_id: str) -> State | None:
        if task_id in self._hub:
            latest = self._hub.latest(task_id)
            if latest is not None:
                return latest
        return await self._cache.get(task_id)

    async def shutdown(self) -> None:
        tasks = list(self._running.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


async def stream_events(
    service: CaptureService,
    task_id: str,
    states: AsyncIterator[State],
    cancel_on_disconnect: bool = False,
) -> AsyncGenerator[dict[str, str], None]:
    """Yield SSE-formatted events for *states*.

    A stream that ends without a terminal state ends with a ``cancelled``
    event so clients never mistake silence for success.
    """
    finished = False
    try:
        async for state in states:
            yield {"event": state.status, "data": state.model_dump_json()}
            if is_terminal(state):
                finished = True
        if not finished:
            finished = True
            yield {"event": "cancelled", "data": json.dumps({"task_id": task_id})}
    finally:
        if not finished and cancel_on_disconnect:
            logger.info("client disconnected, cancelling", extra={"task_id": task_id})
            await service.cancel(task_id)
