"""Harness configuration.

Values are resolved in this order: process environment, `.env`, `.env.defaults`.
`API_BASE_URL` and `API_TOKEN` are required; without them nothing can run, so
`load_config()` raises ConfigurationError instead of letting tests fail one by one.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterator, Optional

from endpoint_sentinel.errors import ConfigurationError

logger = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[2]
ENV_FILES = (".env.defaults", ".env")

DEFAULT_API_TIMEOUT = 30.0
DEFAULT_SCENARIO_TIMEOUT = 120.0

# Loggers that print full request URLs, and with them the token query parameter.
TRANSPORT_LOGGERS = ("httpx", "httpcore")


def read_env_file(path: Path) -> Dict[str, str]:
    """Parse `KEY=value` lines; comments, blanks and malformed lines are skipped."""
    values: Dict[str, str] = {}
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
            value = value[1:-1]
        values[key.strip()] = value
    return values


def _search_dirs() -> Iterator[Path]:
    yield REPO_ROOT
    try:
        cwd = Path.cwd().resolve()
    except OSError:
        return
    if cwd != REPO_ROOT.resolve():
        yield cwd


@lru_cache(maxsize=1)
def env_file_values() -> Dict[str, str]:
    """Merged contents of every `.env.defaults`, then every `.env` (later files win)."""
    merged: Dict[str, str] = {}
    for name in ENV_FILES:
        for directory in _search_dirs():
            path = directory / name
            if path.is_file():
                merged.update(read_env_file(path))
    return merged


def get_default(key: str, fallback: str | None = None) -> str | None:
    return env_file_values().get(key, fallback)


def _lookup(key: str, fallback: str | None = None) -> str | None:
    value = os.getenv(key)
    if value is None or value == "":
        value = get_default(key, fallback)
    return value


def _as_float(key: str, fallback: float) -> float:
    raw = _lookup(key)
    if raw is None or raw == "":
        return fallback
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number of seconds, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{key} must be positive, got {raw!r}")
    return value


def configure_logging(level: str = "INFO") -> None:
    """Root logger setup for the suites; transport loggers are held at WARNING."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    for name in TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@dataclass(frozen=True)
class HarnessConfig:
    """Concrete set of connection details for one contract run."""

    base_url: str
    api_token: str
    api_timeout: float = DEFAULT_API_TIMEOUT
    scenario_timeout: float = DEFAULT_SCENARIO_TIMEOUT
    seed: Optional[int] = None
    schema_dir: Path = REPO_ROOT / "schemas"
    report_dir: Path = Path("test-results")
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.base_url or not self.api_token:
            raise ConfigurationError(
                "API_BASE_URL and API_TOKEN must both be set "
                "(environment, .env or .env.defaults)"
            )
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))

    def __repr__(self) -> str:
        masked = f"{self.api_token[:4]}..." if len(self.api_token) > 4 else "***"
        return (
            f"HarnessConfig(base_url={self.base_url!r}, api_token={masked!r}, "
            f"api_timeout={self.api_timeout}, scenario_timeout={self.scenario_timeout}, "
            f"seed={self.seed})"
        )


def load_config() -> HarnessConfig:
    """Build a HarnessConfig from the environment; raise if a required key is absent."""
    base_url = _lookup("API_BASE_URL") or ""
    api_token = _lookup("API_TOKEN") or ""
    if not base_url or not api_token:
        missing = [key for key, value in (("API_BASE_URL", base_url), ("API_TOKEN", api_token)) if not value]
        raise ConfigurationError(
            f"Missing required configuration: {', '.join(missing)}\n"
            f"Set them in the environment or in {REPO_ROOT / '.env'}"
        )

    seed_raw = _lookup("SENTINEL_SEED")
    seed: Optional[int] = None
    if seed_raw:
        try:
            seed = int(seed_raw)
        except ValueError as exc:
            raise ConfigurationError(f"SENTINEL_SEED must be an integer, got {seed_raw!r}") from exc

    config = HarnessConfig(
        base_url=base_url,
        api_token=api_token,
        api_timeout=_as_float("API_TIMEOUT", DEFAULT_API_TIMEOUT),
        scenario_timeout=_as_float("SCENARIO_TIMEOUT", DEFAULT_SCENARIO_TIMEOUT),
        seed=seed,
        schema_dir=Path(_lookup("SCHEMA_DIR") or REPO_ROOT / "schemas"),
        report_dir=Path(_lookup("REPORT_DIR") or "test-results"),
        log_level=(_lookup("LOG_LEVEL") or "INFO").upper(),
    )
    logger.info("Loaded %r", config)
    return config
