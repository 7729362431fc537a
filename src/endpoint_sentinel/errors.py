"""Error taxonomy for the contract harness.

- ConfigurationError: fatal, raised before any test executes.
- TransportError: network failure or a body that is not JSON.
- ContractViolation: status/schema/field mismatch; an assertion failure.
- IllegalTransition: a lifecycle step was requested from the wrong state.

Expected domain errors (not-found, duplicate code) are not exceptions at all;
scenarios assert them positively.
"""
from __future__ import annotations

from typing import Any, Iterable, List, Optional


class SentinelError(Exception):
    """Base class for harness errors."""


class ConfigurationError(SentinelError):
    """Required configuration (base URL, token) is missing or malformed."""


class TransportError(SentinelError):
    """The HTTP exchange itself failed (connection, timeout, non-JSON body)."""

    def __init__(
        self,
        message: str,
        *,
        method: str,
        url: str,
        status_code: Optional[int] = None,
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.method = method
        self.url = url
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        parts = [f"{self.method} {self.url}: {self.args[0]}"]
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.body:
            parts.append(f"body={self.body[:200]!r}")
        return " ".join(parts)


class ContractViolation(AssertionError):
    """A response did not honour its contract.

    Subclasses AssertionError so pytest reports it as a test failure rather
    than an error, and so the rest of the suite keeps running.
    """

    def __init__(
        self,
        message: str,
        *,
        expected: Any = None,
        actual: Any = None,
        payload: Any = None,
        errors: Optional[Iterable[str]] = None,
    ) -> None:
        self.message = message
        self.expected = expected
        self.actual = actual
        self.payload = payload
        self.errors: List[str] = list(errors or [])
        super().__init__(self._render())

    def _render(self) -> str:
        text = self.message
        if self.expected is not None or self.actual is not None:
            text += f" (expected={self.expected!r}, actual={self.actual!r})"
        if self.errors:
            text += "\n  - " + "\n  - ".join(self.errors)
        return text


class ScenarioBudgetExceeded(ContractViolation):
    """The scenario ran past its wall-clock budget."""


class IllegalTransition(SentinelError):
    """A lifecycle step was requested from a state that does not allow it."""
