"""Reusable workflows for the platform sign-in page."""
from __future__ import annotations

import logging
import re

from ui_tests.browser import Browser
from ui_tests.config import UiCredentials, settings

logger = logging.getLogger(__name__)

EMAIL_INPUT = 'role=textbox[name="Email"]'
PASSWORD_INPUT = 'role=textbox[name="Password"]'
LOGIN_BUTTON = 'role=button[name="Login"]'
FORGOT_PASSWORD_LINK = 'role=link[name="Forgot your password?"]'
RESET_BUTTON = 'role=button[name="Reset password"]'
RETURN_TO_SIGN_IN_LINK = 'role=link[name="Return to sign in"]'

WELCOME_TEXT = "text=Welcome to Platform"
LOGIN_ALERT = "div.alert.alert-error"
LOGIN_ERROR_TEXT = "Incorrect username or password."
RESET_CONFIRMATION = "text=Password reset confirmation sent!"

DASHBOARD_URL = re.compile(r"dashboard")


async def open_sign_in(browser: Browser) -> Browser:
    await browser.goto(settings.url())
    return browser


async def submit_credentials(browser: Browser, credentials: UiCredentials) -> None:
    await browser.fill(EMAIL_INPUT, credentials.email)
    await browser.fill(PASSWORD_INPUT, credentials.password)
    await browser.click(LOGIN_BUTTON)


async def login_expect_dashboard(browser: Browser, credentials: UiCredentials) -> str:
    """Sign in and wait for the dashboard greeting; returns the landing URL."""
    await open_sign_in(browser)
    await submit_credentials(browser, credentials)
    url = await browser.wait_for_url(DASHBOARD_URL)
    await browser.wait_for_visible(WELCOME_TEXT)
    logger.info("Signed in as %s, landed on %s", credentials.email, url)
    return url


async def login_expect_rejection(browser: Browser, credentials: UiCredentials) -> None:
    await open_sign_in(browser)
    await submit_credentials(browser, credentials)
    await browser.wait_for_visible(LOGIN_ALERT)
    await browser.wait_for_text(LOGIN_ALERT, LOGIN_ERROR_TEXT)
    assert not DASHBOARD_URL.search(browser.page.url), f"Rejected login reached {browser.page.url}"


async def request_password_reset(browser: Browser, email: str) -> str:
    """Forgot-password flow: confirmation shown, then back to the sign-in page."""
    await open_sign_in(browser)
    await browser.click(FORGOT_PASSWORD_LINK)
    await browser.fill(EMAIL_INPUT, email)
    await browser.click(RESET_BUTTON)
    await browser.wait_for_visible(RESET_CONFIRMATION)
    await browser.click(RETURN_TO_SIGN_IN_LINK)
    return await browser.wait_for_url(settings.url())
