"""Progress callback helpers shared by the executor and batch coordinator."""

from __future__ import annotations

import logging
from typing import Any, Callable, Coroutine

from .models import Completed, Failed, Processing, Starting

logger = logging.getLogger(__name__)

# Receives every state a run produces, in order.
StateCallback = Callable[[Starting | Processing | Completed | Failed], Coroutine[Any, Any, None]]


async def emit_state(
    on_state: StateCallback | None,
    state: Starting | Processing | Completed | Failed,
) -> None:
    """Forward a state to the callback if one is registered."""
    if on_state:
        logger.debug(
            "task state emitted",
            extra={"status": state.status, "percent": getattr(state, "percent", None)},
        )
        await on_state(state)
