"""Write-only sink for request/response attachments."""
from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, List

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


class ReportSink:
    """Receives named JSON blobs. The harness never reads them back."""

    def attach(self, name: str, payload: Any) -> None:
        raise NotImplementedError


class NullReportSink(ReportSink):
    def attach(self, name: str, payload: Any) -> None:
        return None


class MemoryReportSink(ReportSink):
    """Keeps attachments in a list; handy for inspecting a run in tests."""

    def __init__(self) -> None:
        self.attachments: List[tuple[str, Any]] = []

    def attach(self, name: str, payload: Any) -> None:
        self.attachments.append((name, payload))

    def names(self) -> List[str]:
        return [name for name, _ in self.attachments]


class JsonFileReportSink(ReportSink):
    """Writes each attachment to `<directory>/<name>.json`, pretty-printed."""

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)

    def attach(self, name: str, payload: Any) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        filename = _UNSAFE.sub("_", name)
        if not filename.endswith(".json"):
            filename += ".json"
        path = self.directory / filename
        path.write_text(json.dumps(payload, indent=2, ensure_ascii=False, default=str), encoding="utf-8")
        logger.debug("Attached %s", path)


def safe_dirname(nodeid: str) -> str:
    """Directory name for a pytest node id."""
    return _UNSAFE.sub("_", nodeid).strip("_")[:150]
