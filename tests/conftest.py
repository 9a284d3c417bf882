"""Fixtures — fake render engine, mock Redis."""

import asyncio
from contextlib import asynccontextmanager

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

from pagecapture.cache.redis import RedisCache


class FakeSession:
    """Records every call; behaviour is driven by the owning ``FakeEngine``."""

    def __init__(self, engine: "FakeEngine") -> None:
        self._engine = engine
        self.url: str | None = None

    async def _act(self, name: str, *args) -> None:
        self._engine.calls.append((name, *args))
        delay = self._engine.delays.get(name)
        if delay:
            await asyncio.sleep(delay)
        failure = self._engine.failures.get(name)
        if failure is not None:
            raise failure

    async def login(self, auth, timeout):
        await self._act("login", auth.login_url)

    async def set_viewport(self, viewport):
        await self._act("set_viewport", viewport.width, viewport.height)

    async def block_requests(self, *, ads, cookie_banners):
        await self._act("block_requests", ads, cookie_banners)

    async def goto(self, url, timeout):
        self.url = url
        await self._act("goto", url)
        if url in self._engine.failing_urls:
            raise RuntimeError(f"net::ERR_NAME_NOT_RESOLVED at {url}")

    async def wait_for_selector(self, selector, timeout):
        await self._act("wait_for_selector", selector)

    async def click(self, selector, timeout):
        await self._act("click", selector)
        if selector in self._engine.broken_selectors:
            raise RuntimeError(f"No node found for selector: {selector}")

    async def hover(self, selector, timeout):
        await self._act("hover", selector)
        if selector in self._engine.broken_selectors:
            raise TimeoutError(f"hover timed out: {selector}")

    async def scroll_into_view(self, selector):
        await self._act("scroll_into_view", selector)

    async def content_height(self):
        await self._act("content_height")
        return self._engine.content_height

    async def scroll_to(self, offset):
        await self._act("scroll_to", offset)

    async def screenshot(self):
        await self._act("screenshot")
        self._engine.shots += 1
        return f"png:{self.url}:{self._engine.shots}".encode()

    async def element_screenshot(self, selector):
        await self._act("element_screenshot", selector)
        if selector in self._engine.missing_selectors:
            return None
        return f"element:{selector}".encode()


class FakeEngine:
    """In-memory ``RenderEngine`` used in place of a browser."""

    def __init__(
        self,
        *,
        content_height: int = 800,
        failures: dict | None = None,
        delays: dict | None = None,
        failing_urls: set | None = None,
        missing_selectors: set | None = None,
        broken_selectors: set | None = None,
    ) -> None:
        self.content_height = content_height
        self.failures = failures or {}
        self.delays = delays or {}
        self.failing_urls = failing_urls or set()
        self.missing_selectors = missing_selectors or set()
        self.broken_selectors = broken_selectors or set()
        self.calls: list[tuple] = []
        self.shots = 0
        self.sessions = 0

    @asynccontextmanager
    async def session(self, viewport):
        self.sessions += 1
        yield FakeSession(self)

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def make_engine():
    return FakeEngine


@pytest_asyncio.fixture
async def redis_cache():
    """RedisCache backed by an in-memory FakeRedis instance."""
    client = FakeRedis(decode_responses=True)
    cache = RedisCache(client, default_ttl=3600)
    yield cache
    await client.aclose()
