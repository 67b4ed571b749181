"""Newline-delimited JSON-RPC over a service's stdio pipes.

Messages are the ``mcp.types`` pydantic models; this module only frames
them and copes with services that are slow to flush or that print
non-protocol text on stdout.

Reading rules (``ProtocolClient.receive``):

1. Bytes accumulate across reads; complete lines are tried in order.
2. A line that is not JSON, or is JSON but not a JSON-RPC response
   (log text, notifications, server requests), is skipped.
3. The first response is returned. Lines after it stay buffered for the
   next ``receive``.
4. A read that yields no bytes within ``read_timeout`` uses up one of
   ``max_attempts``, followed by a ``backoff`` pause.
5. End-of-file with nothing usable buffered fails at once.
6. An unterminated line longer than ``max_line_bytes`` fails at once.

Example:
    client = ProtocolClient()
    client.send(process.stdin, client.initialize_request())
    response = client.receive(process.stdout)
"""

from __future__ import annotations

import itertools
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import IO, Any, Protocol, runtime_checkable

from mcp import types
from pydantic import ValidationError

from tool_audit.client.errors import ProtocolError, ReadError, SendError
from tool_audit.observability import get_logger

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"
CLIENT_NAME = "mcp-tool-audit"
CLIENT_VERSION = "1.0.0"

#: Characters of unparseable output quoted in a ReadError.
ERROR_EXCERPT_CHARS = 200

Response = types.JSONRPCResponse | types.JSONRPCError


@dataclass(frozen=True)
class ReadPolicy:
    """Retry budget for one ``receive`` call.

    Attributes:
        max_attempts: Empty reads tolerated before giving up.
        read_timeout: Seconds each read waits for bytes.
        backoff: Pause after an empty read.
        max_line_bytes: Longest unterminated line buffered before giving up.
    """

    max_attempts: int = 3
    read_timeout: float = 5.0
    backoff: float = 0.2
    max_line_bytes: int = 8 * 1024 * 1024


@runtime_checkable
class ResponseSource(Protocol):  # pragma: no cover
    """Readable response stream; PipeReader is the production one."""

    @property
    def at_eof(self) -> bool:
        """True once the stream is closed and fully consumed."""
        ...

    def read(self, timeout: float) -> bytes:
        """Return available bytes, waiting up to ``timeout``; b"" if none."""
        ...


def decode_message(line: bytes) -> Response | None:
    """Parse one line into a JSON-RPC response.

    Returns:
        The response or error response, or None when the line is not JSON
        or is some other kind of JSON-RPC message.
    """
    try:
        message = types.JSONRPCMessage.model_validate_json(line).root
    except ValidationError:
        return None
    if isinstance(message, types.JSONRPCResponse | types.JSONRPCError):
        return message
    logger.debug("Skipping non-response message", kind=type(message).__name__)
    return None


def decode_tool(raw: Any) -> types.Tool | None:
    """Validate one tool definition.

    Schemas are opaque here: a missing or null ``inputSchema`` becomes
    ``{}`` so the tool is still measured.

    Returns:
        The tool, or None (logged) when it cannot be audited at all.
    """
    if isinstance(raw, dict) and raw.get("inputSchema") is None:
        raw = {**raw, "inputSchema": {}}
    try:
        return types.Tool.model_validate(raw)
    except ValidationError as e:
        name = raw.get("name") if isinstance(raw, dict) else None
        logger.warning(
            "Skipping malformed tool", tool=name, validation_errors=e.error_count()
        )
        return None


def decode_tools(result: dict[str, Any]) -> tuple[list[types.Tool], str | None]:
    """Decode a ``tools/list`` result tool by tool.

    A tool that fails validation is skipped; the others are kept.

    Returns:
        The tools in server order and the pagination cursor, if any.

    Raises:
        ProtocolError: If the result has no ``tools`` list.
    """
    entries = result.get("tools") if isinstance(result, dict) else None
    if not isinstance(entries, list):
        raise ProtocolError("malformed tools/list result: 'tools' is not a list")
    tools = [tool for tool in map(decode_tool, entries) if tool is not None]
    cursor = result.get("nextCursor")
    return tools, cursor if isinstance(cursor, str) and cursor else None


class ProtocolClient:
    """Request builder and resilient response reader for one session.

    Args:
        policy: Read retry budget.
        sleep: Back-off sleep function (injectable for tests).
    """

    def __init__(
        self,
        policy: ReadPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.policy = policy or ReadPolicy()
        self._sleep = sleep
        self._ids = itertools.count(1)
        self._pending = bytearray()

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def request(
        self, method: str, params: dict[str, Any] | None = None
    ) -> types.JSONRPCRequest:
        """Build a request with the next id."""
        return types.JSONRPCRequest(
            jsonrpc=JSONRPC_VERSION, id=next(self._ids), method=method, params=params
        )

    def initialize_request(
        self, protocol_version: str = PROTOCOL_VERSION
    ) -> types.JSONRPCRequest:
        """``initialize`` with empty capabilities and this client's identity."""
        params = types.InitializeRequestParams(
            protocolVersion=protocol_version,
            capabilities=types.ClientCapabilities(),
            clientInfo=types.Implementation(name=CLIENT_NAME, version=CLIENT_VERSION),
        )
        return self.request(
            "initialize", params.model_dump(by_alias=True, exclude_none=True, mode="json")
        )

    def list_tools_request(self, cursor: str | None = None) -> types.JSONRPCRequest:
        """``tools/list``; the first page carries no params."""
        return self.request("tools/list", {"cursor": cursor} if cursor else None)

    @staticmethod
    def encode(request: types.JSONRPCRequest) -> bytes:
        """Serialize to one newline-terminated JSON line."""
        return request.model_dump_json(by_alias=True, exclude_none=True).encode() + b"\n"

    def send(self, stream: IO[bytes], request: types.JSONRPCRequest) -> None:
        """Write and flush one request.

        Raises:
            SendError: The pipe is closed or broken.
        """
        try:
            stream.write(self.encode(request))
            stream.flush()
        except (OSError, ValueError) as e:
            raise SendError(f"failed to send {request.method}: {e}") from e
        logger.debug("Request sent", method=request.method, id=request.id)

    # -------------------------------------------------------------------------
    # Responses
    # -------------------------------------------------------------------------

    def receive(self, stream: ResponseSource) -> Response:
        """Read until the first JSON-RPC response.

        Raises:
            ReadError: End-of-file, or the retry budget ran out, before a
                response could be parsed, or a line outgrew
                ``max_line_bytes``.
        """
        skipped = bytearray()
        attempts = 0
        while True:
            message = self._next_buffered(skipped)
            if message is not None:
                return message
            if len(self._pending) > self.policy.max_line_bytes:
                excerpt = bytes(self._pending[:ERROR_EXCERPT_CHARS]).decode(
                    "utf-8", errors="replace"
                )
                self._pending.clear()
                raise ReadError(
                    f"response line exceeds {self.policy.max_line_bytes} bytes "
                    f"without a newline: {excerpt}"
                )
            if attempts >= self.policy.max_attempts:
                break
            chunk = stream.read(self.policy.read_timeout)
            if chunk:
                self._pending.extend(chunk)
                continue
            if stream.at_eof:
                break
            attempts += 1
            logger.debug("Empty read", attempt=attempts, max_attempts=self.policy.max_attempts)
            if attempts < self.policy.max_attempts:
                self._sleep(self.policy.backoff)

        # Last resort: a response written without its trailing newline
        if self._pending.strip():
            fragment = bytes(self._pending)
            self._pending.clear()
            message = decode_message(fragment)
            if message is not None:
                return message
            skipped.extend(fragment)

        if skipped.strip():
            excerpt = skipped.decode("utf-8", errors="replace")[:ERROR_EXCERPT_CHARS]
            raise ReadError(f"no valid JSON-RPC response found in data: {excerpt}")
        if stream.at_eof:
            raise ReadError("response stream closed before a response arrived")
        raise ReadError(f"no data received after {self.policy.max_attempts} attempts")

    def _next_buffered(self, skipped: bytearray) -> Response | None:
        while True:
            newline = self._pending.find(b"\n")
            if newline < 0:
                return None
            line = bytes(self._pending[:newline]).strip()
            del self._pending[: newline + 1]
            if not line:
                continue
            message = decode_message(line)
            if message is not None:
                return message
            if len(skipped) < ERROR_EXCERPT_CHARS:
                skipped.extend(line + b"\n")


__all__ = [
    "PROTOCOL_VERSION",
    "ProtocolClient",
    "ReadPolicy",
    "Response",
    "ResponseSource",
    "decode_message",
    "decode_tool",
    "decode_tools",
]
