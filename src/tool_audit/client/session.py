"""One bounded handshake-and-list exchange with a service.

State machine::

    NOT_STARTED -> STARTED -> INITIALIZED -> TOOLS_LISTED
          \\            \\            \\
           +------------+------------+----> FAILED

The exchange (warm-up, ``initialize``, ``tools/list``) runs on a worker
thread while the caller waits on the future with the session deadline.
The process is owned by the caller's ``with`` block, not by the worker:
whichever side of the race wins, leaving the block kills the process, and
the abandoned worker then sees end-of-file and finishes on its own.

Example:
    session = Session(descriptor)
    try:
        tools = session.run()
    except AuditError as e:
        print(f"{descriptor.name}: {e}")  # session.state is FAILED
"""

from __future__ import annotations

import contextvars
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from enum import Enum

from mcp import types

from tool_audit.client.errors import (
    AuditError,
    HandshakeError,
    ProcessExitedError,
    ProtocolError,
    ReadError,
    SessionTimeoutError,
)
from tool_audit.client.process import ManagedProcess, ProcessHarness
from tool_audit.client.protocol import (
    PROTOCOL_VERSION,
    ProtocolClient,
    ReadPolicy,
    decode_tools,
)
from tool_audit.config import ServiceDescriptor, TimingProfile
from tool_audit.observability import get_logger

logger = get_logger(__name__)

#: Upper bound on followed ``nextCursor`` pages, against cursor loops.
MAX_TOOL_PAGES = 100


class SessionState(Enum):
    """Lifecycle of a Session."""

    NOT_STARTED = "not_started"
    STARTED = "started"
    INITIALIZED = "initialized"
    TOOLS_LISTED = "tools_listed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.TOOLS_LISTED, SessionState.FAILED)


_ALLOWED_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.NOT_STARTED: frozenset({SessionState.STARTED, SessionState.FAILED}),
    SessionState.STARTED: frozenset({SessionState.INITIALIZED, SessionState.FAILED}),
    SessionState.INITIALIZED: frozenset(
        {SessionState.TOOLS_LISTED, SessionState.FAILED}
    ),
    SessionState.TOOLS_LISTED: frozenset(),
    SessionState.FAILED: frozenset(),
}


class Session:
    """Drives ``initialize`` then ``tools/list`` against one service.

    A Session runs once. Timing values default to the descriptor's
    language profile; tests pass millisecond-scale values.

    Args:
        descriptor: Service to audit.
        timing: Warm-up delay and deadline; defaults to ``descriptor.timing``.
        read_policy: Retry budget for each response read.
        harness: Process launcher (injectable for tests).
        poll_interval: Liveness polling interval during warm-up.
        protocol_version: Version string sent in ``initialize``.
    """

    def __init__(
        self,
        descriptor: ServiceDescriptor,
        *,
        timing: TimingProfile | None = None,
        read_policy: ReadPolicy | None = None,
        harness: ProcessHarness | None = None,
        poll_interval: float = 0.1,
        protocol_version: str = PROTOCOL_VERSION,
    ) -> None:
        self.descriptor = descriptor
        self.timing = timing or descriptor.timing
        self.read_policy = read_policy or ReadPolicy()
        self.poll_interval = poll_interval
        self.protocol_version = protocol_version
        self._harness = harness or ProcessHarness()
        self._state = SessionState.NOT_STARTED
        self._state_lock = threading.Lock()
        self.history: list[SessionState] = [SessionState.NOT_STARTED]
        self.error: AuditError | None = None
        self.tools: list[types.Tool] = []

    @property
    def state(self) -> SessionState:
        with self._state_lock:
            return self._state

    def _transition(self, target: SessionState) -> bool:
        """Move to ``target`` if allowed from the current state.

        Returns:
            False when the move is not allowed, which is how a worker that
            lost the race to the deadline is kept from touching a FAILED
            session.
        """
        with self._state_lock:
            if target not in _ALLOWED_TRANSITIONS[self._state]:
                return False
            self._state = target
            self.history.append(target)
        logger.debug("Session state changed", state=target.value)
        return True

    def _fail(self, error: AuditError) -> None:
        if error.service is None:
            error.service = self.descriptor.name
        if self._transition(SessionState.FAILED):
            self.error = error

    # -------------------------------------------------------------------------
    # Driver
    # -------------------------------------------------------------------------

    def run(self) -> list[types.Tool]:
        """Launch the service and list its tools within the deadline.

        Returns:
            Tool definitions in the order the service returned them.

        Raises:
            StartError: The process could not be launched.
            ProcessExitedError: The process exited during warm-up.
            SendError: A request could not be written.
            HandshakeError: No initialize response.
            ReadError: No tools/list response.
            ProtocolError: tools/list returned an error or a bad result.
            SessionTimeoutError: The deadline elapsed first.
            RuntimeError: The session was already run.
        """
        if self.state is not SessionState.NOT_STARTED:
            raise RuntimeError(f"session for {self.descriptor.name} already ran")

        try:
            with self._harness.start(self.descriptor) as process:
                self._transition(SessionState.STARTED)
                logger.debug("Session started", pid=process.pid)
                tools = self._race(process)
        except AuditError as e:
            self._fail(e)
            raise

        self.tools = tools
        self._transition(SessionState.TOOLS_LISTED)
        return tools

    def _race(self, process: ManagedProcess) -> list[types.Tool]:
        """First of {exchange finished, deadline elapsed} wins."""
        deadline = self.timing.timeout_seconds
        executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"session-{self.descriptor.name}"
        )
        context = contextvars.copy_context()
        future = executor.submit(context.run, self._exchange, process)
        try:
            return future.result(timeout=deadline)
        except FutureTimeoutError:
            message = f"timeout after {deadline:g}s waiting for server response"
            returncode = process.returncode
            if returncode is not None:
                message += f" (server exited with status {returncode})"
            raise SessionTimeoutError(message, diagnostics=process.diagnostics()) from None
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _exchange(self, process: ManagedProcess) -> list[types.Tool]:
        """Warm-up, initialize, tools/list. Runs on the worker thread."""
        client = ProtocolClient(self.read_policy)

        if not process.wait_ready(self.timing.warmup_seconds, self.poll_interval):
            returncode = process.returncode
            raise ProcessExitedError(
                f"server process exited early (exit status {returncode})",
                returncode=returncode,
                diagnostics=process.diagnostics(),
            )

        try:
            client.send(process.stdin, client.initialize_request(self.protocol_version))
            response = client.receive(process.stdout)
        except ReadError as e:
            raise HandshakeError(
                self._read_failure("initialize", e, process),
                diagnostics=process.diagnostics(),
            ) from e
        except AuditError as e:
            e.diagnostics = e.diagnostics or process.diagnostics()
            raise
        if isinstance(response, types.JSONRPCError):
            # Only the arrival of a response matters for the handshake
            logger.warning("Initialize returned an error", error=response.error.message)
        self._transition(SessionState.INITIALIZED)

        return self._list_tools(client, process)

    def _list_tools(
        self, client: ProtocolClient, process: ManagedProcess
    ) -> list[types.Tool]:
        tools: list[types.Tool] = []
        cursor: str | None = None
        for _ in range(MAX_TOOL_PAGES):
            try:
                client.send(process.stdin, client.list_tools_request(cursor))
                response = client.receive(process.stdout)
            except ReadError as e:
                raise ReadError(
                    self._read_failure("tools/list", e, process),
                    diagnostics=process.diagnostics(),
                ) from e
            except AuditError as e:
                e.diagnostics = e.diagnostics or process.diagnostics()
                raise

            if isinstance(response, types.JSONRPCError):
                raise ProtocolError(
                    f"tools/list error: {response.error.message}",
                    code=response.error.code,
                )
            page, cursor = decode_tools(response.result)
            tools.extend(page)
            if not cursor:
                logger.debug("Tools listed", tool_count=len(tools))
                return tools
        raise ProtocolError(f"tools/list still paginating after {MAX_TOOL_PAGES} pages")

    @staticmethod
    def _read_failure(method: str, error: ReadError, process: ManagedProcess) -> str:
        message = f"failed to read {method} response: {error.message}"
        returncode = process.returncode
        if returncode is not None:
            message += f" (server exited with status {returncode})"
        return message


__all__ = [
    "MAX_TOOL_PAGES",
    "Session",
    "SessionState",
]
