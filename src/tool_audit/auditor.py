"""Audit orchestration across every configured service.

Each service is audited independently: one Session, one process, one
outcome. Outcomes are appended to an AuditRun as they complete, so with
several workers the run tolerates any completion order. A failure is
recorded and logged once; it never stops the remaining services.

Example:
    descriptors = load_registry(Path("tool-audit.json"))
    run = run_audit(descriptors, workers=4)
    for audit in run.audits:
        print(audit.name, audit.total_tokens)
    print(run.totals().total_tokens)
"""

from __future__ import annotations

import contextvars
import dataclasses
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from tool_audit.analysis import AuditTotals, ServiceAudit, aggregate, build_service_audit
from tool_audit.client import AuditError, ProcessHarness, ReadPolicy, Session
from tool_audit.config import ServiceDescriptor
from tool_audit.observability import AuditStats, LogContext, get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuditOutcome:
    """Value-or-error result of auditing one service.

    Attributes:
        descriptor: The audited service.
        audit: The ServiceAudit on success, else None.
        error: The failure on error, else None.
        duration_ms: Wall time from launch to outcome.
    """

    descriptor: ServiceDescriptor
    audit: ServiceAudit | None = None
    error: BaseException | None = None
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.audit is not None

    @property
    def error_type(self) -> str | None:
        return type(self.error).__name__ if self.error is not None else None

    def to_dict(self) -> dict[str, Any]:
        """Failure record for reports."""
        return {
            "name": self.descriptor.name,
            "language": self.descriptor.language,
            "error_type": self.error_type,
            "error": str(self.error) if self.error is not None else None,
            "duration_ms": round(self.duration_ms, 1),
        }


class AuditRun:
    """Append-only collection of outcomes; safe to fill from many threads."""

    def __init__(self) -> None:
        self._outcomes: list[AuditOutcome] = []
        self._lock = threading.Lock()

    def add(self, outcome: AuditOutcome) -> None:
        with self._lock:
            self._outcomes.append(outcome)

    @property
    def outcomes(self) -> list[AuditOutcome]:
        """All outcomes in completion order."""
        with self._lock:
            return list(self._outcomes)

    @property
    def audits(self) -> list[ServiceAudit]:
        """Successful audits in completion order."""
        return [o.audit for o in self.outcomes if o.audit is not None]

    @property
    def failures(self) -> list[AuditOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    def totals(self) -> AuditTotals:
        return aggregate(self.audits)


def audit_service(
    descriptor: ServiceDescriptor,
    *,
    read_policy: ReadPolicy | None = None,
    harness: ProcessHarness | None = None,
    poll_interval: float = 0.1,
) -> ServiceAudit:
    """List one service's tools and analyze them.

    Args:
        descriptor: Service to audit; its timing profile bounds the session.
        read_policy: Retry budget for each response read.
        harness: Process launcher (injectable for tests).
        poll_interval: Liveness polling interval during warm-up.

    Returns:
        ServiceAudit with tools in the order the service listed them.

    Raises:
        AuditError: Any service-scoped failure from the Session.
    """
    session = Session(
        descriptor,
        read_policy=read_policy,
        harness=harness,
        poll_interval=poll_interval,
    )
    tools = session.run()
    return build_service_audit(descriptor.name, descriptor.language, tools)


def _apply_overrides(
    descriptor: ServiceDescriptor,
    warmup_seconds: float | None,
    timeout_seconds: float | None,
) -> ServiceDescriptor:
    changes: dict[str, float] = {}
    if warmup_seconds is not None:
        changes["warmup_seconds"] = warmup_seconds
    if timeout_seconds is not None:
        changes["timeout_seconds"] = timeout_seconds
    return dataclasses.replace(descriptor, **changes) if changes else descriptor


def run_audit(
    descriptors: Iterable[ServiceDescriptor],
    *,
    workers: int = 1,
    warmup_seconds: float | None = None,
    timeout_seconds: float | None = None,
    read_policy: ReadPolicy | None = None,
    harness: ProcessHarness | None = None,
    poll_interval: float = 0.1,
    stats: AuditStats | None = None,
    on_outcome: Callable[[AuditOutcome], None] | None = None,
) -> AuditRun:
    """Audit every descriptor and collect the outcomes.

    Args:
        descriptors: Services to audit.
        workers: Concurrent audits; 1 audits services one at a time in order.
        warmup_seconds: Global warm-up override for every service.
        timeout_seconds: Global deadline override for every service.
        read_policy: Retry budget for each response read.
        harness: Process launcher (injectable for tests).
        poll_interval: Liveness polling interval during warm-up.
        stats: Collector receiving one record per service.
        on_outcome: Called with each outcome as it completes.

    Returns:
        AuditRun holding every outcome.

    Raises:
        ValueError: If workers is less than 1.
    """
    if workers < 1:
        raise ValueError(f"workers must be at least 1, got {workers}")

    services: Sequence[ServiceDescriptor] = [
        _apply_overrides(d, warmup_seconds, timeout_seconds) for d in descriptors
    ]
    run = AuditRun()

    def audit_one(descriptor: ServiceDescriptor) -> None:
        outcome = _audit_outcome(descriptor, read_policy, harness, poll_interval)
        run.add(outcome)
        if stats is not None:
            stats.record(
                descriptor.name,
                outcome.duration_ms,
                outcome.succeeded,
                outcome.error_type,
            )
        if on_outcome is not None:
            on_outcome(outcome)

    logger.info("Audit started", services=len(services), workers=workers)
    if workers == 1 or len(services) <= 1:
        for descriptor in services:
            audit_one(descriptor)
    else:
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="audit") as executor:
            futures = [
                executor.submit(contextvars.copy_context().run, audit_one, descriptor)
                for descriptor in services
            ]
            for future in futures:
                future.result()

    logger.info(
        "Audit finished",
        succeeded=len(run.audits),
        failed=len(run.failures),
    )
    return run


def _audit_outcome(
    descriptor: ServiceDescriptor,
    read_policy: ReadPolicy | None,
    harness: ProcessHarness | None,
    poll_interval: float,
) -> AuditOutcome:
    """Audit one service and fold any failure into the outcome."""
    with LogContext(service=descriptor.name, language=descriptor.language):
        logger.info("Auditing service")
        start = time.perf_counter()
        try:
            audit = audit_service(
                descriptor,
                read_policy=read_policy,
                harness=harness,
                poll_interval=poll_interval,
            )
        except AuditError as e:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error("Audit failed", error=str(e), error_type=type(e).__name__)
            return AuditOutcome(descriptor, error=e, duration_ms=duration_ms)
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception("Audit failed unexpectedly", error_type=type(e).__name__)
            return AuditOutcome(descriptor, error=e, duration_ms=duration_ms)

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Audit succeeded",
            tool_count=audit.summary.tool_count,
            total_tokens=audit.total_tokens,
            duration_ms=round(duration_ms, 1),
        )
        return AuditOutcome(descriptor, audit=audit, duration_ms=duration_ms)
