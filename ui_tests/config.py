"""Shared configuration for the UI login flows.

Values come from the environment, then `.env` / `.env.defaults` at the
repository root (same lookup as the API harness):
- UI_BASE_URL: sign-in page of the platform (defaults to the dev platform)
- UI_VALID_EMAIL / UI_VALID_PASSWORD: a working read-only account
- UI_INVALID_EMAIL / UI_INVALID_PASSWORD: credentials that must be refused
- PLAYWRIGHT_HEADLESS: "true" (default) or "false"
- UI_TIMEOUT_MS: default Playwright action timeout
- UI_BROWSER: chromium (default), firefox or webkit
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from urllib.parse import urljoin

from endpoint_sentinel.config import get_default

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://dev.platform.mediastre.am"


def _setting(key: str, fallback: str = "") -> str:
    return os.getenv(key) or get_default(key, fallback) or fallback


@dataclass
class UiCredentials:
    email: str
    password: str

    @property
    def configured(self) -> bool:
        return bool(self.email and self.password)


class UiTestConfig:
    """Configuration for the login flows, resolved once at import."""

    def __init__(self) -> None:
        headless_str = _setting("PLAYWRIGHT_HEADLESS", "true")
        self.playwright_headless: bool = headless_str.lower() in {"true", "1"}
        self.timeout_ms: int = int(_setting("UI_TIMEOUT_MS", "30000"))
        self.browser_engine: str = _setting("UI_BROWSER", "chromium").lower()
        self.base_url: str = _setting("UI_BASE_URL", DEFAULT_BASE_URL).rstrip("/")
        self.valid_user = UiCredentials(_setting("UI_VALID_EMAIL"), _setting("UI_VALID_PASSWORD"))
        self.invalid_user = UiCredentials(
            _setting("UI_INVALID_EMAIL", "invalid-user@example.com"),
            _setting("UI_INVALID_PASSWORD", "wrong-password"),
        )
        logger.info(
            "UI target %s (headless=%s, valid user configured=%s)",
            self.base_url,
            self.playwright_headless,
            self.valid_user.configured,
        )

    def url(self, path: str = "") -> str:
        """Return an absolute URL for the provided path."""
        return urljoin(self.base_url + "/", path.lstrip("/"))


settings = UiTestConfig()
