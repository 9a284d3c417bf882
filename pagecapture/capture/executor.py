"""Drives one capture request through its phases against a render engine."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Awaitable, Mapping, TypeVar

from pagecapture.config import Settings

from .engine import PageSession, RenderEngine
from .errors import (
    CaptureError,
    DelegateError,
    ElementNotFound,
    InvalidRequest,
    NavigationTimeout,
    SelectorTimeout,
)
from .events import StateCallback, emit_state
from .models import (
    BeforeCapture,
    CaptureRequest,
    CaptureResult,
    Completed,
    Failed,
    Processing,
    Size,
    Starting,
    TaskError,
    parse_request,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Percent reported on entering each phase. Phases run in this order.
PHASE_PERCENT: dict[str, int] = {
    "starting": 0,
    "auth": 15,
    "viewport": 20,
    "blocking": 30,
    "navigate": 40,
    "wait_selector": 50,
    "interact": 60,
    "delay": 70,
    "capture": 90,
    "completed": 100,
}


@dataclass
class _Run:
    request: CaptureRequest
    on_state: StateCallback | None
    phase: str = "starting"


class CaptureExecutor:
    """Runs exactly one capture request to a terminal state per call.

    The executor never retries; callers that want retries (the scheduler)
    call :meth:`run` again. Cancelling the awaiting task abandons the current
    phase and no terminal state is emitted.
    """

    def __init__(
        self,
        engine: RenderEngine,
        *,
        navigation_timeout: float = 30.0,
        selector_timeout: float = 10.0,
        interaction_timeout: float = 5.0,
        interaction_settle_ms: int = 100,
        section_settle_ms: int = 500,
    ) -> None:
        self._engine = engine
        self._navigation_timeout = navigation_timeout
        self._selector_timeout = selector_timeout
        self._interaction_timeout = interaction_timeout
        self._interaction_settle = interaction_settle_ms / 1000
        self._section_settle = section_settle_ms / 1000

    @classmethod
    def from_settings(cls, engine: RenderEngine, settings: Settings) -> CaptureExecutor:
        return cls(
            engine,
            navigation_timeout=settings.navigation_timeout_seconds,
            selector_timeout=settings.selector_timeout_seconds,
            interaction_timeout=settings.interaction_timeout_seconds,
            interaction_settle_ms=settings.interaction_settle_ms,
            section_settle_ms=settings.section_settle_ms,
        )

    async def run(
        self,
        request: CaptureRequest | Mapping[str, Any],
        on_state: StateCallback | None = None,
    ) -> Completed | Failed:
        """Execute *request*, emitting every state, and return the terminal one."""
        try:
            request = parse_request(request)
        except InvalidRequest as exc:
            logger.warning("capture request rejected", extra={"reason": exc.message})
            failed = Failed(error=TaskError.from_exception(exc))
            await emit_state(on_state, failed)
            return failed

        await emit_state(on_state, Starting(message=f"Starting screenshot capture for {request.url}"))
        try:
            results = await self.capture(request, on_state)
        except CaptureError as exc:
            logger.warning(
                "capture failed",
                extra={"url": request.url, "kind": exc.kind.value, "phase": exc.phase, "error": exc.message},
            )
            failed = Failed(error=TaskError.from_exception(exc))
            await emit_state(on_state, failed)
            return failed

        message = (
            "Screenshots captured successfully!" if len(results) > 1 else "Screenshot captured successfully!"
        )
        completed = Completed(results=results, message=message)
        await emit_state(on_state, completed)
        return completed

    async def capture(
        self,
        request: CaptureRequest,
        on_state: StateCallback | None = None,
    ) -> list[CaptureResult]:
        """Drive the phases and return a non-empty result list; raises ``CaptureError``."""
        run = _Run(request=request, on_state=on_state)
        logger.info(
            "capture started",
            extra={"url": request.url, "full_page": request.full_page, "selector": request.selector},
        )
        try:
            async with self._engine.session(request.viewport) as session:
                results = await self._drive(session, run)
        except CaptureError:
            raise
        except Exception as exc:
            raise DelegateError(str(exc) or type(exc).__name__, phase=run.phase) from exc

        logger.info("capture completed", extra={"url": request.url, "sections": len(results)})
        return results

    async def _enter(self, run: _Run, phase: str, message: str) -> None:
        run.phase = phase
        await emit_state(
            run.on_state,
            Processing(percent=PHASE_PERCENT[phase], phase=phase, message=message, current_url=run.request.url),
        )

    async def _bounded(self, awaitable: Awaitable[T], timeout: float) -> T:
        return await asyncio.wait_for(awaitable, timeout)

    async def _drive(self, session: PageSession, run: _Run) -> list[CaptureResult]:
        request = run.request

        auth = request.authentication
        if auth is not None and auth.login_url:
            await self._enter(run, "auth", "Handling authentication...")
            try:
                await self._bounded(session.login(auth, self._navigation_timeout), self._navigation_timeout)
            except TimeoutError as exc:
                raise NavigationTimeout(
                    f"Login page did not settle within {self._navigation_timeout:g}s", phase="auth"
                ) from exc

        await self._enter(run, "viewport", "Setting viewport...")
        await session.set_viewport(request.viewport)

        if request.hide_ads or request.hide_cookie_banners:
            await self._enter(run, "blocking", "Setting up content blocking...")
            await session.block_requests(ads=request.hide_ads, cookie_banners=request.hide_cookie_banners)

        await self._enter(run, "navigate", "Loading page...")
        try:
            await self._bounded(session.goto(request.url, self._navigation_timeout), self._navigation_timeout)
        except TimeoutError as exc:
            raise NavigationTimeout(
                f"Navigation to {request.url} timed out after {self._navigation_timeout:g}s", phase="navigate"
            ) from exc

        if request.wait_for_selector:
            await self._enter(run, "wait_selector", f'Waiting for element "{request.wait_for_selector}"...')
            try:
                await self._bounded(
                    session.wait_for_selector(request.wait_for_selector, self._selector_timeout),
                    self._selector_timeout,
                )
            except TimeoutError as exc:
                raise SelectorTimeout(
                    f'Element "{request.wait_for_selector}" did not appear within {self._selector_timeout:g}s',
                    phase="wait_selector",
                ) from exc

        before = request.before_capture
        if before is not None and before.has_entries:
            await self._enter(run, "interact", "Performing interactions...")
            await self._interact(session, before, request.url)

        if request.delay_seconds > 0:
            await self._enter(run, "delay", f"Waiting for {request.delay_seconds} seconds...")
            await asyncio.sleep(request.delay_seconds)

        await self._enter(run, "capture", "Capturing screenshot...")
        return await self._capture_images(session, request)

    async def _interact(self, session: PageSession, before: BeforeCapture, url: str) -> None:
        steps = [("click", s, session.click) for s in before.click]
        steps += [("hover", s, session.hover) for s in before.hover]
        for action, selector, perform in steps:
            try:
                await self._bounded(perform(selector, self._interaction_timeout), self._interaction_timeout)
            except TimeoutError:
                logger.warning(
                    "interaction timed out, continuing",
                    extra={"url": url, "action": action, "selector": selector},
                )
            except Exception:
                logger.warning(
                    "interaction failed, continuing",
                    extra={"url": url, "action": action, "selector": selector},
                    exc_info=True,
                )
            await asyncio.sleep(self._interaction_settle)

        if before.wait_ms:
            await asyncio.sleep(before.wait_ms / 1000)

    async def _capture_images(self, session: PageSession, request: CaptureRequest) -> list[CaptureResult]:
        size = Size(width=request.viewport.width, height=request.viewport.height)

        if request.selector:
            if request.scroll_to_element:
                await session.scroll_into_view(request.selector)
                await asyncio.sleep(self._section_settle)
            image = await session.element_screenshot(request.selector)
            if image is None:
                raise ElementNotFound(f"Element not found: {request.selector}", phase="capture")
            return [CaptureResult(image_data=image, source_url=request.url, viewport=size)]

        if request.full_page:
            total_height = await session.content_height()
            sections = max(1, math.ceil(total_height / request.viewport.height))
            logger.debug(
                "full page capture",
                extra={"url": request.url, "content_height": total_height, "sections": sections},
            )
            results: list[CaptureResult] = []
            for index in range(sections):
                await session.scroll_to(index * request.viewport.height)
                await asyncio.sleep(self._section_settle)
                image = await session.screenshot()
                results.append(
                    CaptureResult(
                        image_data=image,
                        source_url=request.url,
                        viewport=size,
                        section_index=index + 1,
                        total_sections=sections,
                    )
                )
            return results

        image = await session.screenshot()
        return [CaptureResult(image_data=image, source_url=request.url, viewport=size)]
