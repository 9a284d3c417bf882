"""Render engine protocol and the Playwright-backed implementation."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Protocol

from playwright.async_api import Browser, BrowserContext, Page, Playwright, Request, Route
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from .models import Authentication, Viewport

logger = logging.getLogger(__name__)

_USERNAME_SELECTORS = (
    'input[type="email"]',
    'input[name="email"]',
    'input[name="username"]',
    "#email",
    "#username",
    'input[type="text"]',
)
_PASSWORD_SELECTORS = (
    'input[type="password"]',
    'input[name="password"]',
    "#password",
)
_AD_MARKERS = ("doubleclick", "adservice", "/ads/", "googlesyndication", "analytics")
_COOKIE_MARKERS = ("cookie", "consent", "gdpr")


class PageSession(Protocol):
    """Operations the executor drives against one browser page.

    Methods that accept ``timeout`` raise the builtin ``TimeoutError`` when it
    elapses; every other failure surfaces as an ordinary exception.
    """

    async def login(self, auth: Authentication, timeout: float) -> None: ...

    async def set_viewport(self, viewport: Viewport) -> None: ...

    async def block_requests(self, *, ads: bool, cookie_banners: bool) -> None: ...

    async def goto(self, url: str, timeout: float) -> None: ...

    async def wait_for_selector(self, selector: str, timeout: float) -> None: ...

    async def click(self, selector: str, timeout: float) -> None: ...

    async def hover(self, selector: str, timeout: float) -> None: ...

    async def scroll_into_view(self, selector: str) -> None: ...

    async def content_height(self) -> int: ...

    async def scroll_to(self, offset: int) -> None: ...

    async def screenshot(self) -> bytes: ...

    async def element_screenshot(self, selector: str) -> bytes | None: ...


class RenderEngine(Protocol):
    """A capability handing out page sessions; ``session`` waits for a free slot."""

    def session(self, viewport: Viewport) -> AsyncContextManager[PageSession]: ...


class PlaywrightPageSession:
    """``PageSession`` over a Playwright page."""

    def __init__(self, page: Page) -> None:
        self._page = page

    async def login(self, auth: Authentication, timeout: float) -> None:
        timeout_ms = timeout * 1000
        try:
            await self._page.goto(auth.login_url, wait_until="networkidle", timeout=timeout_ms)
            if not (auth.username and auth.password):
                return
            await self._fill_first(_USERNAME_SELECTORS, auth.username)
            await self._fill_first(_PASSWORD_SELECTORS, auth.password)
            async with self._page.expect_navigation(wait_until="networkidle", timeout=timeout_ms):
                if auth.login_selector:
                    await self._page.click(auth.login_selector, timeout=timeout_ms)
                else:
                    await self._page.evaluate(
                        "() => { const form = document.querySelector('form'); if (form) form.submit(); }"
                    )
        except PlaywrightTimeoutError as exc:
            raise TimeoutError(str(exc)) from exc

    async def _fill_first(self, selectors: tuple[str, ...], value: str) -> None:
        for selector in selectors:
            locator = self._page.locator(selector).first
            if await locator.count():
                await locator.fill(value)
                return
        logger.warning("no login field matched", extra={"selectors": list(selectors)})

    async def set_viewport(self, viewport: Viewport) -> None:
        await self._page.set_viewport_size({"width": viewport.width, "height": viewport.height})

    async def block_requests(self, *, ads: bool, cookie_banners: bool) -> None:
        markers: tuple[str, ...] = ()
        if ads:
            markers += _AD_MARKERS
        if cookie_banners:
            markers += _COOKIE_MARKERS

        async def _route(route: Route, request: Request) -> None:
            url = request.url.lower()
            if any(marker in url for marker in markers):
                await route.abort()
            else:
                await route.continue_()

        await self._page.route("**/*", _route)

    async def goto(self, url: str, timeout: float) -> None:
        try:
            await self._page.goto(url, wait_until="networkidle", timeout=timeout * 1000)
        except PlaywrightTimeoutError as exc:
            raise TimeoutError(str(exc)) from exc

    async def wait_for_selector(self, selector: str, timeout: float) -> None:
        try:
            await self._page.wait_for_selector(selector, timeout=timeout * 1000)
        except PlaywrightTimeoutError as exc:
            raise TimeoutError(str(exc)) from exc

    async def click(self, selector: str, timeout: float) -> None:
        try:
            await self._page.click(selector, timeout=timeout * 1000)
        except PlaywrightTimeoutError as exc:
            raise TimeoutError(str(exc)) from exc

    async def hover(self, selector: str, timeout: float) -> None:
        try:
            await self._page.hover(selector, timeout=timeout * 1000)
        except PlaywrightTimeoutError as exc:
            raise TimeoutError(str(exc)) from exc

    async def scroll_into_view(self, selector: str) -> None:
        await self._page.evaluate(
            "(sel) => { const el = document.querySelector(sel);"
            " if (el) el.scrollIntoView({block: 'center'}); }",
            selector,
        )

    async def content_height(self) -> int:
        return await self._page.evaluate(
            """() => Math.max(
                document.body.scrollHeight, document.documentElement.scrollHeight,
                document.body.offsetHeight, document.documentElement.offsetHeight,
                document.body.clientHeight, document.documentElement.clientHeight)"""
        )

    async def scroll_to(self, offset: int) -> None:
        await self._page.evaluate("(y) => window.scrollTo(0, y)", offset)

    async def screenshot(self) -> bytes:
        return await self._page.screenshot(type="png", full_page=False)

    async def element_screenshot(self, selector: str) -> bytes | None:
        element = await self._page.query_selector(selector)
        if element is None:
            return None
        return await element.screenshot(type="png")


class PlaywrightEngine:
    """Shared headless Chromium with a bounded pool of page sessions.

    Call :meth:`start` before use and :meth:`stop` on shutdown. Each session
    gets its own browser context so cookies from an authenticated capture do
    not leak into the next one.
    """

    def __init__(self, *, headless: bool = True, channel: str = "", max_sessions: int = 1) -> None:
        self._headless = headless
        self._channel = channel
        self._slots = asyncio.Semaphore(max(1, max_sessions))
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._start_lock = asyncio.Lock()

    async def start(self) -> None:
        async with self._start_lock:
            if self._browser is not None:
                return
            self._playwright = await async_playwright().start()
            launch_kwargs: dict = {
                "headless": self._headless,
                "args": ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"],
            }
            if self._channel:
                launch_kwargs["channel"] = self._channel
            logger.info("launching chromium", extra={"channel": self._channel or "bundled"})
            self._browser = await self._playwright.chromium.launch(**launch_kwargs)

    async def stop(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        logger.info("chromium stopped")

    @asynccontextmanager
    async def session(self, viewport: Viewport) -> AsyncIterator[PageSession]:
        async with self._slots:
            if self._browser is None:
                await self.start()
            assert self._browser is not None
            context: BrowserContext = await self._browser.new_context(
                viewport={"width": viewport.width, "height": viewport.height},
                device_scale_factor=viewport.scale_factor,
                is_mobile=viewport.is_mobile,
            )
            try:
                page = await context.new_page()
                yield PlaywrightPageSession(page)
            finally:
                await context.close()
