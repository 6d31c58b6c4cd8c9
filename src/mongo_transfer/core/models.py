"""
Run models for export and import.

A Job tracks one collection (export) or one file (import) from start to a
terminal status. A RunSummary aggregates the jobs of a run and is what the
CLI prints at the end.
"""

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class JobStatus(str, Enum):
    """Lifecycle status of a Job."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.SKIPPED)


class ErrorKind(str, Enum):
    """Classification recorded on a Job that failed or was skipped for an error."""
    INVALID_FILE_NAME = "invalid_file_name"
    CHECKSUM_MISSING = "checksum_missing"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    DECODE_ERROR = "decode_error"
    WRITE_ERROR = "write_error"
    EXPORT_ERROR = "export_error"


@dataclass
class Job:
    """
    One unit of work: a collection on export, a file on import.

    Attributes:
        name: Collection name or file name
        total_units: Expected number of documents (None while unknown)
        processed_units: Documents exported, or documents written on import
        status: Current lifecycle status
        error_kind: Set when the job failed or was skipped because of an error
        failure_reason: Human-readable reason for error_kind or a plain skip
        duplicates: Documents left as they were because their _id already existed
    """
    name: str
    total_units: Optional[int] = None
    processed_units: int = 0
    status: JobStatus = JobStatus.PENDING
    error_kind: Optional[ErrorKind] = None
    failure_reason: Optional[str] = None
    duplicates: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    _started_monotonic: float = field(default=0.0, repr=False, compare=False)

    def start(self, total_units: Optional[int] = None) -> "Job":
        if self.status != JobStatus.PENDING:
            raise RuntimeError(f"Job {self.name} already started ({self.status.value})")
        self.total_units = total_units
        self.status = JobStatus.RUNNING
        self.started_at = datetime.now(timezone.utc)
        self._started_monotonic = time.monotonic()
        return self

    def advance(self, n: int = 1) -> None:
        self.processed_units += n

    def succeed(self) -> None:
        self._finish(JobStatus.SUCCEEDED)

    def fail(self, kind: ErrorKind, reason: str) -> None:
        self.error_kind = ErrorKind(kind)
        self.failure_reason = reason
        self._finish(JobStatus.FAILED)

    def skip(self, reason: str, kind: Optional[ErrorKind] = None) -> None:
        self.error_kind = ErrorKind(kind) if kind else None
        self.failure_reason = reason
        self._finish(JobStatus.SKIPPED)

    def _finish(self, status: JobStatus) -> None:
        if self.status.is_terminal:
            raise RuntimeError(f"Job {self.name} already finished ({self.status.value})")
        self.status = status
        self.finished_at = datetime.now(timezone.utc)

    @property
    def elapsed_seconds(self) -> float:
        if not self._started_monotonic:
            return 0.0
        return time.monotonic() - self._started_monotonic

    @property
    def is_error(self) -> bool:
        """True for failures and for skips caused by an error."""
        return self.error_kind is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "total_units": self.total_units,
            "processed_units": self.processed_units,
            "duplicates": self.duplicates,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "failure_reason": self.failure_reason,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class RunSummary:
    """
    Aggregate result of an export or import run.

    Jobs may be recorded from several worker threads; record() and
    add_failure() are serialized by an internal lock.
    """
    action: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    jobs: List[Job] = field(default_factory=list)
    extra_failures: List[Dict[str, str]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, job: Job) -> None:
        """Add a finished job."""
        if not job.status.is_terminal:
            raise ValueError(f"Job {job.name} is not finished ({job.status.value})")
        with self._lock:
            self.jobs.append(job)

    def add_failure(self, unit: str, reason: str) -> None:
        """Record a failure that is not tied to a Job (e.g. writing the manifest)."""
        with self._lock:
            self.extra_failures.append({"unit": unit, "reason": reason})

    def complete(self) -> "RunSummary":
        self.completed_at = datetime.now(timezone.utc)
        return self

    def _count(self, status: JobStatus) -> int:
        return sum(1 for job in self.jobs if job.status == status)

    @property
    def succeeded(self) -> int:
        return self._count(JobStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self._count(JobStatus.FAILED) + len(self.extra_failures)

    @property
    def skipped(self) -> int:
        return self._count(JobStatus.SKIPPED)

    @property
    def documents(self) -> int:
        return sum(job.processed_units for job in self.jobs)

    @property
    def duplicates(self) -> int:
        return sum(job.duplicates for job in self.jobs)

    @property
    def elapsed_seconds(self) -> float:
        end = self.completed_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()

    @property
    def failures(self) -> List[Dict[str, str]]:
        """Every failed unit, and every unit skipped because of an error."""
        entries = [
            {
                "unit": job.name,
                "reason": f"{job.error_kind.value}: {job.failure_reason}",
            }
            for job in self.jobs
            if job.is_error
        ]
        return entries + list(self.extra_failures)

    def get_job(self, name: str) -> Optional[Job]:
        for job in self.jobs:
            if job.name == name:
                return job
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "action": self.action,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "totals": {
                "units": len(self.jobs),
                "succeeded": self.succeeded,
                "failed": self.failed,
                "skipped": self.skipped,
                "documents": self.documents,
                "duplicates": self.duplicates,
            },
            "jobs": [job.to_dict() for job in self.jobs],
            "failures": self.failures,
        }

    def summary(self) -> str:
        """Get a human-readable summary."""
        lines = [
            f"{self.action.capitalize()} Summary",
            f"  Duration: {self.elapsed_seconds:.1f}s",
            f"  Units: {len(self.jobs)}",
            f"    Succeeded: {self.succeeded}",
            f"    Failed: {self.failed}",
            f"    Skipped: {self.skipped}",
            f"  Documents: {self.documents}",
        ]
        if self.duplicates:
            lines.append(f"  Duplicates tolerated: {self.duplicates}")

        failures = self.failures
        if failures:
            lines.append("")
            lines.append("  Failures:")
            for failure in failures:
                lines.append(f"    {failure['unit']}: {failure['reason']}")
        return "\n".join(lines)
