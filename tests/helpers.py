"""Test helpers for mcp-tool-audit.

Provides the scriptable fake MCP server, tool builders and read policies
shared by the client, auditor and CLI tests.

Fake server modes:
    ok          answer initialize and tools/list
    silent      log one stderr line, read requests, never answer
    hang        answer initialize, then stall on tools/list
    error       answer tools/list with a JSON-RPC error payload
    init_error  answer initialize with an error payload, then list tools
    noisy       emit log text and a notification before every response
    paginate    serve the tools over two pages via nextCursor
    env         report the PYTHONPATH it was launched with as a tool
    exit        write to stderr and exit with status 3 immediately

Example:
    from tests.helpers import RESPONSIVE_READS, make_tool
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from tool_audit.client import ManagedProcess, ProcessHarness, ReadPolicy
from tool_audit.config import ServiceDescriptor

FAKE_SERVER_SOURCE = '''\
import json
import os
import sys
import time

config = json.loads(sys.argv[1])
mode = config.get("mode", "ok")
tools = config.get("tools", [])

if mode == "exit":
    sys.stderr.write("boom: missing dependency\\n")
    sys.stderr.flush()
    sys.exit(3)

if mode == "silent":
    sys.stderr.write("listening on stdio\\n")
    sys.stderr.flush()


def reply(message):
    sys.stdout.write(json.dumps(message) + "\\n")
    sys.stdout.flush()


def result(request, payload):
    reply({"jsonrpc": "2.0", "id": request["id"], "result": payload})


def error(request, code, message):
    reply({"jsonrpc": "2.0", "id": request["id"], "error": {"code": code, "message": message}})


for line in sys.stdin:
    request = json.loads(line)
    method = request["method"]
    if mode == "silent":
        continue
    if mode == "noisy":
        sys.stdout.write("fake server starting up...\\n")
        reply({"jsonrpc": "2.0", "method": "notifications/message",
               "params": {"level": "info", "data": "hello"}})
    if method == "initialize":
        if mode == "init_error":
            error(request, -32603, "not ready")
        else:
            result(request, {
                "protocolVersion": "2024-11-05",
                "capabilities": {"tools": {}},
                "serverInfo": {"name": "fake", "version": "0.0.1"},
            })
    elif method == "tools/list":
        if mode == "error":
            error(request, -32601, "Method not found")
        elif mode == "hang":
            time.sleep(60)
        elif mode == "paginate":
            cursor = (request.get("params") or {}).get("cursor")
            if cursor is None:
                result(request, {"tools": tools[:1], "nextCursor": "page-2"})
            else:
                result(request, {"tools": tools[1:]})
        elif mode == "env":
            result(request, {"tools": [{
                "name": "env",
                "description": os.environ.get("PYTHONPATH", ""),
                "inputSchema": {"type": "object"},
            }]})
        else:
            result(request, {"tools": tools})
'''

#: Generous budget for servers that do answer; reads return as soon as
#: bytes arrive, so the timeout only matters on slow machines.
RESPONSIVE_READS = ReadPolicy(max_attempts=3, read_timeout=2.0, backoff=0.01)

#: Small budget for servers that never answer.
QUICK_READS = ReadPolicy(max_attempts=2, read_timeout=0.1, backoff=0.01)


def make_tool(name: str, description: str | None = None, schema: Any = None) -> dict[str, Any]:
    """Tool definition as a server would send it."""
    tool: dict[str, Any] = {
        "name": name,
        "inputSchema": schema if schema is not None else {"type": "object"},
    }
    if description is not None:
        tool["description"] = description
    return tool


class RecordingHarness(ProcessHarness):
    """ProcessHarness that keeps every process it launched for inspection."""

    def __init__(self) -> None:
        self.processes: list[ManagedProcess] = []

    @contextmanager
    def start(self, descriptor: ServiceDescriptor) -> Iterator[ManagedProcess]:
        with super().start(descriptor) as process:
            self.processes.append(process)
            yield process

