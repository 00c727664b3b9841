"""Browser pool management using patchright.

Rules:
  - One browser process per engine run, owned by the orchestrator
  - One isolated context per worker, never shared (shared cookies and
    storage make a site rate-limit every worker at once)
  - patchright, not vanilla playwright
"""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from types import TracebackType
from typing import Any, Protocol

from patchright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from harvest.core.config import BrowserConfig

logger = logging.getLogger(__name__)

LAUNCH_ARGS = (
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
)


class BrowserSession:
    """One isolated browsing context and its single page."""

    def __init__(self, context: BrowserContext, page: Page) -> None:
        self.context = context
        self.page = page


class SessionPool(Protocol):
    """Anything that can hand out exclusive browser sessions."""

    def session(self) -> Any:
        """Return an async context manager yielding a BrowserSession."""


class BrowserPool:
    """Async context manager that owns one patchright browser.

    Usage::

        async with BrowserPool(config) as pool:
            async with pool.session() as session:
                await session.page.goto("https://...")
    """

    def __init__(self, config: BrowserConfig) -> None:
        self._config = config
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._cookies: list[Any] = []
        self._open_contexts = 0

    @property
    def open_contexts(self) -> int:
        return self._open_contexts

    async def __aenter__(self) -> "BrowserPool":
        pw = await async_playwright().start()
        self._playwright = pw
        try:
            self._browser = await pw.chromium.launch(
                headless=self._config.headless,
                args=list(LAUNCH_ARGS),
            )
        except Exception:
            await pw.stop()
            self._playwright = None
            raise
        if self._config.cookies_path:
            self._cookies = _load_cookies(self._config.cookies_path)
        logger.info("Browser pool started (headless=%s)", self._config.headless)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        logger.info("Browser pool released")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[BrowserSession]:
        """Open a fresh context + page, closed again on exit."""
        if self._browser is None:
            msg = "BrowserPool not entered — use 'async with'"
            raise RuntimeError(msg)

        context = await self._browser.new_context(
            user_agent=self._config.user_agent,
            locale=self._config.locale,
            timezone_id=self._config.timezone_id,
            viewport={
                "width": self._config.viewport_width,
                "height": self._config.viewport_height,
            },
            ignore_https_errors=True,
        )
        self._open_contexts += 1
        try:
            if self._cookies:
                await context.add_cookies(self._cookies)
            context.set_default_timeout(self._config.timeout_ms)
            page = await context.new_page()
            yield BrowserSession(context, page)
        finally:
            self._open_contexts -= 1
            await context.close()


def _load_cookies(path: str) -> list[Any]:
    """Load cookies from a JSON file. Returns empty list on any failure."""
    cookie_path = Path(path)
    if not cookie_path.exists():
        logger.debug("Cookie file not found: %s", path)
        return []
    try:
        data = json.loads(cookie_path.read_text())
        if isinstance(data, list):
            return data
        logger.warning("Cookie file is not a JSON array: %s", path)
        return []
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to load cookies from %s: %s", path, e)
        return []
