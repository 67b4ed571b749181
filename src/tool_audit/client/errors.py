"""Error taxonomy for a single service audit.

Every error here is scoped to one service: the run records it and moves
on to the next service.

    AuditError
    ├── StartError            process could not be launched
    ├── ProcessExitedError    process died during warm-up or closed stdout
    ├── SendError             request could not be written
    ├── ReadError             no parseable response within the retry budget
    │   └── HandshakeError    ...while reading the initialize response
    ├── ProtocolError         explicit error payload or malformed result
    └── SessionTimeoutError   deadline elapsed (also a builtin TimeoutError)
"""

from __future__ import annotations

#: Longest stderr excerpt included in an error message.
MAX_DIAGNOSTIC_CHARS = 1024


class AuditError(Exception):
    """Base class for service-scoped audit failures.

    Attributes:
        service: Name of the service being audited, when known.
        diagnostics: Text captured from the service's stderr, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        service: str | None = None,
        diagnostics: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.service = service
        self.diagnostics = diagnostics

    def __str__(self) -> str:
        if not self.diagnostics:
            return self.message
        excerpt = self.diagnostics.strip()[-MAX_DIAGNOSTIC_CHARS:]
        return f"{self.message}, stderr: {excerpt}"


class StartError(AuditError):
    """Working directory or executable unusable."""


class ProcessExitedError(AuditError):
    """The service process exited before the exchange completed.

    Attributes:
        returncode: Exit status, or None if it could not be collected.
    """

    def __init__(
        self,
        message: str,
        *,
        returncode: int | None = None,
        service: str | None = None,
        diagnostics: str = "",
    ) -> None:
        super().__init__(message, service=service, diagnostics=diagnostics)
        self.returncode = returncode


class SendError(AuditError):
    """A request could not be written to the service's stdin."""


class ReadError(AuditError):
    """The response stream yielded no parseable message."""


class HandshakeError(ReadError):
    """The initialize response never arrived."""


class ProtocolError(AuditError):
    """The service answered with an error payload or an unusable result.

    Attributes:
        code: JSON-RPC error code, None for malformed results.
    """

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        service: str | None = None,
        diagnostics: str = "",
    ) -> None:
        super().__init__(message, service=service, diagnostics=diagnostics)
        self.code = code


class SessionTimeoutError(AuditError, TimeoutError):
    """The exchange did not finish before the session deadline."""


__all__ = [
    "AuditError",
    "HandshakeError",
    "ProcessExitedError",
    "ProtocolError",
    "ReadError",
    "SendError",
    "SessionTimeoutError",
    "StartError",
]
