"""Offline fixtures: the harness talks to the Flask mock through httpx.WSGITransport."""
import sys
from pathlib import Path

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
for path in (ROOT, ROOT / "src"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from api_tests.mock_platform_api import MOCK_TOKEN, create_mock_api_app, reset_mock_state, seed_platform
from endpoint_sentinel.api_client import ApiClient
from endpoint_sentinel.config import HarnessConfig, configure_logging
from endpoint_sentinel.reporting import MemoryReportSink
from endpoint_sentinel.scenarios import RunContext

MOCK_BASE_URL = "http://platform.test"

configure_logging("INFO")


@pytest.fixture
def mock_app():
    """Fresh, empty mock platform."""
    reset_mock_state()
    app = create_mock_api_app()
    yield app
    reset_mock_state()


@pytest.fixture
def seeded_app(mock_app):
    seed_platform()
    return mock_app


@pytest.fixture
def client(mock_app):
    with ApiClient(MOCK_BASE_URL, MOCK_TOKEN, transport=httpx.WSGITransport(app=mock_app)) as client:
        yield client


@pytest.fixture
def config():
    return HarnessConfig(
        base_url=MOCK_BASE_URL,
        api_token=MOCK_TOKEN,
        seed=1234,
        schema_dir=ROOT / "schemas",
    )


@pytest.fixture
def report():
    return MemoryReportSink()


@pytest.fixture
def empty_ctx(config, client, report):
    """RunContext over a platform holding no data at all."""
    return RunContext.from_config(config, client=client, report=report)


@pytest.fixture
def ctx(seeded_app, empty_ctx):
    """RunContext over the seeded platform."""
    return empty_ctx
