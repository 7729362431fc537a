import sys
from pathlib import Path

import pytest
import pytest_asyncio

ROOT = Path(__file__).resolve().parents[1]
for path in (ROOT, ROOT / "src"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from endpoint_sentinel.config import configure_logging
from ui_tests.browser import Browser
from ui_tests.config import settings
from ui_tests.playwright_client import PlaywrightClient

configure_logging("INFO")


def pytest_collection_modifyitems(items):
    for item in items:
        if "ui_tests" in item.nodeid:
            item.add_marker(pytest.mark.ui)


@pytest_asyncio.fixture()
async def playwright_client():
    """Create a Playwright client instance."""
    async with PlaywrightClient.from_settings(settings) as client:
        yield client


@pytest_asyncio.fixture()
async def browser(playwright_client):
    """Create a Browser instance with the Playwright page."""
    browser = Browser(playwright_client.page)
    await browser.reset()
    return browser


@pytest.fixture()
def valid_user():
    if not settings.valid_user.configured:
        pytest.skip("UI_VALID_EMAIL / UI_VALID_PASSWORD not configured")
    return settings.valid_user
