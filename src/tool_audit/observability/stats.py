"""Audit run statistics.

Collects one record per attempted service audit and summarizes them:

- attempted / succeeded / failed counts and success rate
- duration of successful audits (min, max, avg)
- failures categorized by error type

Thread-safe; ``run_audit`` records from its worker threads.

Example:
    stats = AuditStats()
    stats.record("osmmcp", duration_ms=3120.5, success=True)
    stats.record("aismcp", duration_ms=45000.0, success=False,
                 error_type="SessionTimeoutError")

    summary = stats.get_summary()
    print(f"Success rate: {summary.success_rate:.0%}")
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


def _utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


@dataclass
class StatsSummary:
    """Summary of an audit run.

    Attributes:
        attempted: Services whose audit was attempted.
        succeeded: Audits that produced a ServiceAudit.
        failed: Audits that ended in an error.
        success_rate: succeeded / attempted (0.0 when nothing ran).
        min_duration_ms: Fastest successful audit.
        max_duration_ms: Slowest successful audit.
        avg_duration_ms: Mean successful audit duration.
        error_counts: Failures per error type.
        started_at: When the collector was created or reset.
        last_record_at: Time of the most recent record.
    """

    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    success_rate: float = 0.0
    min_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    avg_duration_ms: float = 0.0
    error_counts: dict[str, int] = field(default_factory=dict)
    started_at: datetime | None = None
    last_record_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-compatible types for the JSON report."""
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "min_duration_ms": self.min_duration_ms,
            "max_duration_ms": self.max_duration_ms,
            "avg_duration_ms": self.avg_duration_ms,
            "error_counts": dict(self.error_counts),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "last_record_at": (
                self.last_record_at.isoformat() if self.last_record_at else None
            ),
        }


@dataclass
class AuditRecord:
    """Outcome of one service audit attempt."""

    service: str
    duration_ms: float
    success: bool
    error_type: str | None = None


class AuditStats:
    """Thread-safe collector of per-service audit records."""

    def __init__(self) -> None:
        self._records: list[AuditRecord] = []
        self._started_at = _utc_now()
        self._last_record_at: datetime | None = None
        self._lock = threading.Lock()

    def record(
        self,
        service: str,
        duration_ms: float,
        success: bool,
        error_type: str | None = None,
    ) -> None:
        """Record one audit attempt.

        Args:
            service: Service name.
            duration_ms: Wall time from launch to outcome.
            success: True when a ServiceAudit was produced.
            error_type: Error class name for failures, e.g.
                ``"SessionTimeoutError"``. Ignored for successes.
        """
        entry = AuditRecord(
            service=service,
            duration_ms=duration_ms,
            success=success,
            error_type=None if success else error_type,
        )
        with self._lock:
            self._records.append(entry)
            self._last_record_at = _utc_now()

    @property
    def records(self) -> list[AuditRecord]:
        """Snapshot of the records in arrival order."""
        with self._lock:
            return list(self._records)

    def get_summary(self) -> StatsSummary:
        """Compute the summary from a snapshot of the records.

        Durations only cover successful audits; a timed-out audit would
        otherwise dominate the average.
        """
        with self._lock:
            records = list(self._records)
            started_at = self._started_at
            last_record_at = self._last_record_at

        durations = [r.duration_ms for r in records if r.success]
        error_counts: dict[str, int] = {}
        for r in records:
            if not r.success:
                key = r.error_type or "unknown"
                error_counts[key] = error_counts.get(key, 0) + 1

        attempted = len(records)
        succeeded = len(durations)
        return StatsSummary(
            attempted=attempted,
            succeeded=succeeded,
            failed=attempted - succeeded,
            success_rate=succeeded / attempted if attempted else 0.0,
            min_duration_ms=min(durations) if durations else 0.0,
            max_duration_ms=max(durations) if durations else 0.0,
            avg_duration_ms=sum(durations) / succeeded if succeeded else 0.0,
            error_counts=error_counts,
            started_at=started_at,
            last_record_at=last_record_at,
        )

    def reset(self) -> None:
        """Discard all records and restart the clock."""
        with self._lock:
            self._records.clear()
            self._started_at = _utc_now()
            self._last_record_at = None
