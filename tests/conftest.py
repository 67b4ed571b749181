"""Pytest configuration and fixtures for mcp-tool-audit tests.

Services under test are real subprocesses: the fake MCP server from
``tests.helpers`` written to ``tmp_path`` and launched with
``sys.executable``. Audit timings are shrunk to milliseconds so the suite
stays fast.
"""

from __future__ import annotations

import json
import sys
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from tests.helpers import FAKE_SERVER_SOURCE, RecordingHarness
from tool_audit.config import ServiceDescriptor
from tool_audit.observability import reset_logging


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    """Drop any handler a test configured."""
    yield
    reset_logging()


@pytest.fixture
def fake_server_script(tmp_path: Path) -> Path:
    path = tmp_path / "fake_server.py"
    path.write_text(FAKE_SERVER_SOURCE, encoding="utf-8")
    return path


@pytest.fixture
def make_descriptor(
    tmp_path: Path, fake_server_script: Path
) -> Callable[..., ServiceDescriptor]:
    """Factory for descriptors that launch the fake server.

    Example:
        >>> descriptor = make_descriptor("ok", [make_tool("echo", "Echo")])
    """

    def factory(
        mode: str = "ok",
        tools: list[dict[str, Any]] | None = None,
        *,
        name: str = "fake",
        language: str = "Go",
        warmup: float = 0.05,
        timeout: float = 10.0,
        env: dict[str, str] | None = None,
    ) -> ServiceDescriptor:
        config = json.dumps({"mode": mode, "tools": tools or []})
        return ServiceDescriptor(
            name=name,
            language=language,
            command=(sys.executable, str(fake_server_script), config),
            work_dir=tmp_path,
            warmup_seconds=warmup,
            timeout_seconds=timeout,
            env=env or {},
        )

    return factory


@pytest.fixture
def recording_harness() -> RecordingHarness:
    return RecordingHarness()
