"""Fixtures for the live contract suites.

Configuration is loaded when this conftest is imported: a missing base URL
or token stops the run before any test is collected.

Run with: python -m pytest api_tests -v
"""
import dataclasses
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
for path in (ROOT, ROOT / "src"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from endpoint_sentinel.api_client import ApiClient
from endpoint_sentinel.config import configure_logging, load_config
from endpoint_sentinel.errors import ConfigurationError
from endpoint_sentinel.reporting import JsonFileReportSink, safe_dirname
from endpoint_sentinel.scenarios import RunContext

try:
    CONFIG = load_config()
except ConfigurationError as exc:
    pytest.exit(f"Configuration error: {exc}", returncode=4)

configure_logging(CONFIG.log_level)


def pytest_collection_modifyitems(items):
    for item in items:
        if "api_tests" in item.nodeid:
            item.add_marker(pytest.mark.live)


@pytest.fixture(scope="session")
def run_context():
    """One RunContext per run; its client is closed when the session ends."""
    with ApiClient.from_config(CONFIG) as client:
        yield RunContext.from_config(CONFIG, client=client)


@pytest.fixture()
def ctx(run_context, request):
    """The session RunContext with a report directory of this test's own."""
    sink = JsonFileReportSink(CONFIG.report_dir / safe_dirname(request.node.nodeid))
    return dataclasses.replace(run_context, report=sink)
