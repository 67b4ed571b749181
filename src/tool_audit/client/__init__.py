"""Stdio MCP client used to pull tool definitions out of a service.

Layers, leaves first:
    process: ProcessHarness / ManagedProcess own the child and its pipes
    protocol: ProtocolClient frames requests and reads responses resiliently
    session: Session runs initialize + tools/list against a deadline
"""

from tool_audit.client.errors import (
    AuditError,
    HandshakeError,
    ProcessExitedError,
    ProtocolError,
    ReadError,
    SendError,
    SessionTimeoutError,
    StartError,
)
from tool_audit.client.process import ManagedProcess, PipeReader, ProcessHarness
from tool_audit.client.protocol import (
    PROTOCOL_VERSION,
    ProtocolClient,
    ReadPolicy,
    decode_message,
    decode_tools,
)
from tool_audit.client.session import Session, SessionState

__all__ = [
    # Errors
    "AuditError",
    "HandshakeError",
    "ProcessExitedError",
    "ProtocolError",
    "ReadError",
    "SendError",
    "SessionTimeoutError",
    "StartError",
    # Process
    "ManagedProcess",
    "PipeReader",
    "ProcessHarness",
    # Protocol
    "PROTOCOL_VERSION",
    "ProtocolClient",
    "ReadPolicy",
    "decode_message",
    "decode_tools",
    # Session
    "Session",
    "SessionState",
]
