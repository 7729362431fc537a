"""Best-effort deletion of fixtures created during a scenario or suite.

Usage:
    cleanup = CleanupCoordinator(client)
    with cleanup.scope():
        created = client.post("/api/coupon", payload)
        cleanup.track(created.first()["_id"], COUPON_ENDPOINT)
        ...
    # flush() has run here whatever happened inside the block

Cleanup must never mask the outcome of the test it follows: deletion
failures are logged and reported in the FlushReport, never raised.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

from endpoint_sentinel.api_client import DOMAIN_ERROR, ApiClient

logger = logging.getLogger(__name__)

COUPON_ENDPOINT = "/api/coupon/{id}"
CATEGORY_ENDPOINT = "/api/category/{id}"


@dataclass(frozen=True)
class Fixture:
    """Handle to one entity created by the harness."""

    identifier: str
    endpoint: str = COUPON_ENDPOINT
    label: str = ""

    @property
    def delete_path(self) -> str:
        return self.endpoint.format(id=self.identifier)


@dataclass
class FlushReport:
    deleted: List[Fixture] = field(default_factory=list)
    failed: List[Fixture] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.deleted) + len(self.failed)


class CleanupCoordinator:
    """Owns the Fixture Ledger for one scenario (or one suite)."""

    def __init__(self, client: ApiClient, default_endpoint: str = COUPON_ENDPOINT) -> None:
        self.client = client
        self.default_endpoint = default_endpoint
        self._ledger: List[Fixture] = []

    @property
    def ledger(self) -> List[Fixture]:
        return list(self._ledger)

    def __len__(self) -> int:
        return len(self._ledger)

    def track(self, identifier: str, endpoint: Optional[str] = None, label: str = "") -> Fixture:
        """Append a created entity to the ledger and return its handle."""
        if not identifier:
            raise ValueError("cannot track a fixture without an identifier")
        fixture = Fixture(identifier=str(identifier), endpoint=endpoint or self.default_endpoint, label=label)
        self._ledger.append(fixture)
        logger.debug("Tracking fixture %s", fixture.delete_path)
        return fixture

    def release(self, identifier: str) -> bool:
        """Forget an entity the scenario already deleted itself."""
        for index, fixture in enumerate(self._ledger):
            if fixture.identifier == identifier:
                del self._ledger[index]
                return True
        return False

    def flush(self) -> FlushReport:
        """Attempt deletion of every tracked fixture, then clear the ledger.

        The ledger is emptied before the first request so a second flush
        (or a re-entrant one from a nested scope) never deletes twice.
        """
        pending, self._ledger = self._ledger, []
        report = FlushReport()
        if not pending:
            return report

        logger.info("Cleaning up %d fixture(s)", len(pending))
        for fixture in pending:
            try:
                response = self.client.delete(fixture.delete_path)
            except Exception as exc:
                logger.warning("Error cleaning up fixture %s: %s", fixture.delete_path, exc)
                report.failed.append(fixture)
                continue

            if response.status in (200, 204) and response.domain_status != DOMAIN_ERROR:
                logger.info("Fixture removed: %s", fixture.delete_path)
                report.deleted.append(fixture)
            else:
                logger.warning(
                    "Fixture %s not removed: status %s, domain %s, data %r",
                    fixture.delete_path,
                    response.status,
                    response.domain_status,
                    response.data,
                )
                report.failed.append(fixture)
        return report

    @contextmanager
    def scope(self) -> Iterator["CleanupCoordinator"]:
        """Run the enclosed block and flush on every exit path."""
        try:
            yield self
        finally:
            self.flush()
