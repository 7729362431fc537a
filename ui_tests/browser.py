"""Thin wrapper around direct Playwright for ergonomic assertions."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict

import anyio
from playwright.async_api import Page, TimeoutError as PlaywrightTimeout


@dataclass
class ToolError(Exception):
    """Raised when a browser operation fails."""

    name: str
    payload: Dict[str, Any]
    message: str

    def __str__(self) -> str:  # pragma: no cover - human readable helper
        return f"{self.name} failed ({self.message}) with payload={self.payload}"


class Browser:
    """Convenience wrapper over direct Playwright with ergonomic API.

    Selectors are Playwright selectors, so role selectors such as
    ``role=button[name="Login"]`` work everywhere a CSS selector does.
    """

    def __init__(self, page: Page) -> None:
        self._page = page
        self.current_url: str | None = None
        self.current_title: str | None = None

    @property
    def page(self) -> Page:
        return self._page

    async def _update_state(self) -> None:
        self.current_url = self._page.url
        self.current_title = await self._page.title()

    async def reset(self) -> Dict[str, Any]:
        """Navigate to about:blank (reset state)."""
        await self._page.goto("about:blank")
        await self._update_state()
        return {"url": self.current_url, "title": self.current_title}

    async def goto(self, url: str, wait_until: str = "networkidle", timeout: int = 30000) -> Dict[str, Any]:
        """Navigate to URL and return response with status.

        "networkidle" can time out on pages with long-polling connections;
        the navigation is then retried with "domcontentloaded".
        """
        try:
            response = await self._page.goto(url, wait_until=wait_until, timeout=timeout)
        except PlaywrightTimeout as exc:
            if wait_until != "networkidle":
                raise ToolError(name="goto", payload={"url": url, "wait_until": wait_until}, message=str(exc))
            try:
                response = await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout)
            except PlaywrightTimeout:
                raise ToolError(name="goto", payload={"url": url, "wait_until": wait_until}, message=str(exc))
        await self._update_state()
        return {"url": self.current_url, "title": self.current_title, "status": response.status if response else None}

    async def fill(self, selector: str, value: str) -> Dict[str, Any]:
        """Fill input field."""
        try:
            await self._page.locator(selector).fill(value)
            return {"selector": selector}
        except Exception as exc:
            raise ToolError(name="fill", payload={"selector": selector}, message=str(exc))

    async def click(self, selector: str) -> Dict[str, Any]:
        """Click element."""
        try:
            await self._page.locator(selector).click()
            await self._update_state()
            return {"selector": selector, "url": self.current_url}
        except Exception as exc:
            raise ToolError(name="click", payload={"selector": selector}, message=str(exc))

    async def text(self, selector: str) -> str:
        """Get text content of element."""
        try:
            text = await self._page.text_content(selector, timeout=5000)
            return text or ""
        except Exception as exc:
            raise ToolError(name="text", payload={"selector": selector}, message=str(exc))

    async def wait_for_visible(self, selector: str, timeout: float = 10.0) -> None:
        try:
            await self._page.locator(selector).first.wait_for(state="visible", timeout=timeout * 1000)
        except PlaywrightTimeout as exc:
            raise AssertionError(f"'{selector}' not visible within {timeout}s on {self._page.url}") from exc

    async def wait_for_url(self, pattern: str | re.Pattern[str], timeout: float = 15.0) -> str:
        """Wait until the page URL matches `pattern` (regex or exact string)."""
        matcher = re.compile(pattern) if isinstance(pattern, str) and pattern.startswith("^") else pattern
        try:
            await self._page.wait_for_url(matcher, timeout=timeout * 1000)
        except PlaywrightTimeout as exc:
            raise AssertionError(f"URL {self._page.url} never matched {pattern!r}") from exc
        await self._update_state()
        return self.current_url or ""

    async def wait_for_text(self, selector: str, expected: str, timeout: float = 3.0, interval: float = 0.5) -> str:
        """Poll for text content until it contains the expected substring."""
        deadline = anyio.current_time() + timeout
        last_error: ToolError | None = None

        while anyio.current_time() <= deadline:
            try:
                content = await self.text(selector)
            except ToolError as exc:
                content = ""
                last_error = exc
            if expected in content:
                return content
            await anyio.sleep(interval)

        if last_error:
            raise AssertionError(
                f"Timed out waiting for '{expected}' in selector '{selector}'. Last error: {last_error}"
            ) from last_error
        raise AssertionError(f"Timed out waiting for '{expected}' in selector '{selector}'")
