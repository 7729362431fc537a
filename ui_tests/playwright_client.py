"""In-process Playwright session for the sign-in flows.

One client owns one browser, one isolated context and the page the flows
drive. The context is created with the sign-in origin as its base URL, so a
flow can navigate with relative paths.

    async with PlaywrightClient.from_settings(settings) as client:
        await client.page.goto("/")
"""
from __future__ import annotations

import logging
from typing import Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

logger = logging.getLogger(__name__)

BROWSER_ENGINES = ("chromium", "firefox", "webkit")


class PlaywrightClient:
    def __init__(
        self,
        base_url: str,
        engine: str = "chromium",
        headless: bool = True,
        timeout_ms: int = 30000,
    ) -> None:
        if engine not in BROWSER_ENGINES:
            raise ValueError(f"Unknown browser engine {engine!r}; expected one of {', '.join(BROWSER_ENGINES)}")
        self.base_url = base_url
        self.engine = engine
        self.headless = headless
        self.timeout_ms = timeout_ms

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    @classmethod
    def from_settings(cls, settings) -> "PlaywrightClient":
        return cls(
            base_url=settings.base_url,
            engine=settings.browser_engine,
            headless=settings.playwright_headless,
            timeout_ms=settings.timeout_ms,
        )

    async def __aenter__(self) -> "PlaywrightClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def start(self) -> None:
        self._playwright = await async_playwright().start()
        launcher = getattr(self._playwright, self.engine)
        self._browser = await launcher.launch(headless=self.headless)
        # Fresh context per client: no cookies or storage survive between flows.
        self._context = await self._browser.new_context(base_url=self.base_url + "/")
        self._context.set_default_timeout(self.timeout_ms)
        self._page = await self._context.new_page()
        logger.debug("Started %s (headless=%s) for %s", self.engine, self.headless, self.base_url)

    async def stop(self) -> None:
        """Release page, context, browser and driver; safe to call twice."""
        for name in ("_page", "_context", "_browser"):
            resource = getattr(self, name)
            setattr(self, name, None)
            if resource is not None:
                await resource.close()
        if self._playwright is not None:
            playwright, self._playwright = self._playwright, None
            await playwright.stop()

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("PlaywrightClient.start() has not been awaited")
        return self._page
