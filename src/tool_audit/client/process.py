"""Child process lifecycle for one service audit.

``ProcessHarness.start`` launches the service described by a
ServiceDescriptor and yields a ManagedProcess exposing three streams:

- ``stdin``: writable binary request stream
- ``stdout``: PipeReader over the response stream
- ``stderr``: PipeReader over the diagnostic stream (bounded tail)

Leaving the ``with`` block always closes stdin, kills the process (its
whole process group on POSIX), reaps it and stops the pump threads,
exactly once, whatever happened inside the block.

Example:
    harness = ProcessHarness()
    with harness.start(descriptor) as process:
        process.stdin.write(b'{"jsonrpc": "2.0", ...}\\n')
        chunk = process.stdout.read(timeout=1.0)
    # process is dead and reaped here
"""

from __future__ import annotations

import os
import signal
import subprocess  # nosec B404 - launching registry services is the purpose
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import IO

from tool_audit.client.errors import StartError
from tool_audit.config import ServiceDescriptor
from tool_audit.observability import get_logger

logger = get_logger(__name__)

#: Bytes requested from the OS per pump read.
READ_CHUNK_SIZE = 64 * 1024

#: Most recent stderr bytes kept for diagnostics.
STDERR_TAIL_BYTES = 4 * 1024

#: How long cleanup waits for the reaped process and the pump threads.
CLEANUP_JOIN_SECONDS = 2.0


class PipeReader:
    """Drains a child pipe on a daemon thread into an in-memory buffer.

    Readers never touch the pipe itself, so a reader abandoned after a
    timeout cannot race the cleanup that closes it.

    Args:
        pipe: Binary file object of the child pipe.
        name: Thread name suffix for debugging.
        limit: Keep at most this many of the most recent bytes. None keeps
            everything until it is read.
    """

    def __init__(self, pipe: IO[bytes], name: str, limit: int | None = None) -> None:
        self._pipe = pipe
        self._limit = limit
        self._buffer = bytearray()
        self._eof = False
        self._cond = threading.Condition()
        self._thread = threading.Thread(
            target=self._pump, name=f"pipe-{name}", daemon=True
        )
        self._thread.start()

    def _pump(self) -> None:
        read = getattr(self._pipe, "read1", self._pipe.read)
        try:
            while True:
                try:
                    chunk = read(READ_CHUNK_SIZE)
                except (OSError, ValueError):
                    # ValueError: pipe closed under us during cleanup
                    break
                if not chunk:
                    break
                with self._cond:
                    self._buffer.extend(chunk)
                    if self._limit is not None and len(self._buffer) > self._limit:
                        del self._buffer[: len(self._buffer) - self._limit]
                    self._cond.notify_all()
        finally:
            with self._cond:
                self._eof = True
                self._cond.notify_all()

    @property
    def at_eof(self) -> bool:
        """True once the pipe is closed and every buffered byte was read."""
        with self._cond:
            return self._eof and not self._buffer

    def read(self, timeout: float) -> bytes:
        """Return buffered bytes, waiting up to ``timeout`` for some.

        Returns:
            Everything buffered so far, or ``b""`` if nothing arrived in
            time or the pipe reached end-of-file.
        """
        with self._cond:
            self._cond.wait_for(lambda: self._buffer or self._eof, timeout=timeout)
            data = bytes(self._buffer)
            self._buffer.clear()
            return data

    def snapshot(self) -> bytes:
        """Copy of the buffered bytes, left in place."""
        with self._cond:
            return bytes(self._buffer)

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()


class ManagedProcess:
    """A running service process and its streams.

    Created by ProcessHarness.start; not meant to be built directly.
    """

    def __init__(self, descriptor: ServiceDescriptor, popen: subprocess.Popen[bytes]):
        if popen.stdin is None or popen.stdout is None or popen.stderr is None:
            raise StartError("server pipes were not opened", service=descriptor.name)
        self.descriptor = descriptor
        self._popen = popen
        self.stdin: IO[bytes] = popen.stdin
        self.stdout = PipeReader(popen.stdout, f"{descriptor.name}-stdout")
        self.stderr = PipeReader(
            popen.stderr, f"{descriptor.name}-stderr", limit=STDERR_TAIL_BYTES
        )
        self._closed = False
        self._close_lock = threading.Lock()

    @property
    def pid(self) -> int:
        return self._popen.pid

    @property
    def returncode(self) -> int | None:
        """Exit status if the process has exited, else None."""
        return self._popen.poll()

    def is_running(self) -> bool:
        return self._popen.poll() is None

    def diagnostics(self) -> str:
        """Decoded stderr captured so far (most recent bytes only)."""
        return self.stderr.snapshot().decode("utf-8", errors="replace")

    def wait_ready(self, delay: float, poll_interval: float = 0.1) -> bool:
        """Warm-up wait that notices an early exit.

        There is no readiness signal in the protocol, so this waits the full
        ``delay`` while the process is alive, polling it every
        ``poll_interval`` seconds.

        Returns:
            False as soon as the process is seen to have exited.
        """
        deadline = time.monotonic() + delay
        while True:
            if not self.is_running():
                return False
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return True
            time.sleep(min(poll_interval, remaining))

    def close(self) -> None:
        """Close stdin, kill and reap the process, stop the pumps.

        Idempotent; only the first call does anything.
        """
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        try:
            self.stdin.close()
        except OSError:
            pass  # broken pipe on flush: the process is already gone

        self._kill()
        try:
            self._popen.wait(timeout=CLEANUP_JOIN_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning("Process did not exit after kill", pid=self.pid)

        for reader, pipe in (
            (self.stdout, self._popen.stdout),
            (self.stderr, self._popen.stderr),
        ):
            reader.join(CLEANUP_JOIN_SECONDS)
            if reader.is_alive():
                # A surviving grandchild still holds the write end; closing
                # would block on the pump's buffer lock
                logger.warning("Pipe still open after kill", pid=self.pid)
            elif pipe is not None:
                pipe.close()
        logger.debug("Process reaped", pid=self.pid, returncode=self._popen.returncode)

    def _kill(self) -> None:
        if os.name == "posix":
            try:
                # start_new_session made the child a group leader; take
                # launcher grandchildren (go run, npx) down with it
                os.killpg(self._popen.pid, signal.SIGKILL)
                return
            except (ProcessLookupError, PermissionError):
                pass
        try:
            self._popen.kill()
        except ProcessLookupError:
            pass


class ProcessHarness:
    """Launches services and guarantees their cleanup."""

    @contextmanager
    def start(self, descriptor: ServiceDescriptor) -> Iterator[ManagedProcess]:
        """Launch ``descriptor`` and yield the running process.

        Args:
            descriptor: Service to launch.

        Yields:
            ManagedProcess; closed when the block exits, however it exits.

        Raises:
            StartError: Working directory missing, command empty, or the
                executable cannot be run.
        """
        process = self._spawn(descriptor)
        try:
            yield process
        finally:
            process.close()

    def _spawn(self, descriptor: ServiceDescriptor) -> ManagedProcess:
        name = descriptor.name
        if not descriptor.command:
            raise StartError("empty command", service=name)
        if not descriptor.work_dir.is_dir():
            raise StartError(
                f"server directory does not exist: {descriptor.work_dir}", service=name
            )

        env = None
        overrides = descriptor.environment_overrides()
        if overrides:
            env = {**os.environ, **overrides}

        try:
            popen = subprocess.Popen(  # nosec B603 - command from the user's registry
                list(descriptor.command),
                cwd=descriptor.work_dir,
                env=env,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=os.name == "posix",
            )
        except OSError as e:
            raise StartError(f"failed to start server: {e}", service=name) from e

        logger.debug(
            "Process started",
            pid=popen.pid,
            command=list(descriptor.command),
            cwd=str(descriptor.work_dir),
        )
        try:
            return ManagedProcess(descriptor, popen)
        except StartError:
            popen.kill()
            popen.wait()
            raise


__all__ = [
    "ManagedProcess",
    "PipeReader",
    "ProcessHarness",
]
