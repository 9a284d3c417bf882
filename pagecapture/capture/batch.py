"""Sequential batch captures with per-item failure isolation."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from .events import StateCallback, emit_state
from .executor import CaptureExecutor
from .models import BatchItem, CaptureRequest, Completed, Processing, Starting

logger = logging.getLogger(__name__)


def _item_url(request: CaptureRequest | Mapping[str, Any]) -> str:
    if isinstance(request, CaptureRequest):
        return request.url
    return str(request.get("url", ""))


class BatchCoordinator:
    """Runs an ordered list of requests one after another through one executor.

    Items share the executor's render engine, so they never run concurrently.
    """

    def __init__(self, executor: CaptureExecutor) -> None:
        self._executor = executor

    async def run_batch(
        self,
        requests: Sequence[CaptureRequest | Mapping[str, Any]],
        on_state: StateCallback | None = None,
    ) -> list[BatchItem]:
        """Return one ``BatchItem`` per request, in input order."""
        total = len(requests)
        items: list[BatchItem] = []
        for index, request in enumerate(requests):
            url = _item_url(request)
            await emit_state(
                on_state,
                Processing(
                    percent=100 * index // total,
                    phase="batch",
                    message=f"Capturing {url}",
                    current_url=url,
                    completed_count=index,
                    total_count=total,
                ),
            )
            outcome = await self._executor.run(request)
            if outcome.status == "completed":
                items.append(BatchItem(index=index, url=url, results=outcome.results))
            else:
                logger.warning(
                    "batch item failed",
                    extra={"index": index, "url": url, "kind": outcome.error.kind.value},
                )
                items.append(BatchItem(index=index, url=url, error=outcome.error))
        return items

    async def run(
        self,
        requests: Sequence[CaptureRequest | Mapping[str, Any]],
        on_state: StateCallback | None = None,
    ) -> Completed:
        """Run the batch and emit ``starting`` ... ``completed`` for the batch as a whole.

        The batch completes once every item was attempted; callers inspect
        ``items`` for per-item outcomes.
        """
        logger.info("batch started", extra={"items": len(requests)})
        await emit_state(on_state, Starting(message=f"Starting batch of {len(requests)} captures"))
        items = await self.run_batch(requests, on_state)
        failures = sum(1 for item in items if not item.ok)
        completed = Completed(
            items=items,
            message=f"Captured {len(items) - failures} of {len(items)} pages",
        )
        logger.info("batch completed", extra={"items": len(items), "failures": failures})
        await emit_state(on_state, completed)
        return completed
