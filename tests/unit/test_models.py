"""
Unit tests for core models.

These tests verify the data models without external dependencies.
"""

import threading

import pytest

from mongo_transfer.core.models import ErrorKind, Job, JobStatus, RunSummary


class TestJob:
    """Tests for Job lifecycle."""

    def test_job_creation(self):
        """Test default values are set correctly."""
        job = Job(name="users")

        assert job.status == JobStatus.PENDING
        assert job.total_units is None
        assert job.processed_units == 0
        assert job.error_kind is None
        assert not job.is_error

    def test_job_success(self):
        job = Job(name="users").start(total_units=3)
        job.advance(2)
        job.advance()
        job.succeed()

        assert job.status == JobStatus.SUCCEEDED
        assert job.processed_units == 3
        assert job.started_at is not None
        assert job.finished_at >= job.started_at

    def test_job_failure_records_kind(self):
        job = Job(name="users.json").start()
        job.fail(ErrorKind.DECODE_ERROR, "bad element")

        assert job.status == JobStatus.FAILED
        assert job.error_kind == ErrorKind.DECODE_ERROR
        assert job.is_error

    def test_skip_without_error_is_not_an_error(self):
        job = Job(name="empty").start(0)
        job.skip("empty collection")
        assert job.status == JobStatus.SKIPPED
        assert not job.is_error

    def test_skip_with_error_kind_accepts_string(self):
        job = Job(name="x.json")
        job.skip("no entry", kind="checksum_missing")
        assert job.error_kind == ErrorKind.CHECKSUM_MISSING

    def test_terminal_job_cannot_finish_again(self):
        job = Job(name="users").start()
        job.succeed()
        with pytest.raises(RuntimeError):
            job.fail(ErrorKind.WRITE_ERROR, "late")

    def test_job_cannot_start_twice(self):
        job = Job(name="users").start()
        with pytest.raises(RuntimeError):
            job.start()

    def test_to_dict(self):
        job = Job(name="users").start(1)
        job.fail(ErrorKind.EXPORT_ERROR, "cursor died")

        data = job.to_dict()
        assert data["status"] == "failed"
        assert data["error_kind"] == "export_error"
        assert data["failure_reason"] == "cursor died"


class TestRunSummary:
    """Tests for RunSummary aggregation."""

    def _finished(self, name, status, processed=0, kind=None, reason=None):
        job = Job(name=name).start()
        job.advance(processed)
        if status == JobStatus.SUCCEEDED:
            job.succeed()
        elif status == JobStatus.FAILED:
            job.fail(kind, reason)
        else:
            job.skip(reason, kind=kind)
        return job

    def test_counts_and_failures(self):
        summary = RunSummary(action="import")
        summary.record(self._finished("a.json", JobStatus.SUCCEEDED, processed=5))
        summary.record(self._finished("b.json", JobStatus.FAILED, kind=ErrorKind.WRITE_ERROR, reason="boom"))
        summary.record(self._finished("c.json", JobStatus.SKIPPED, kind=ErrorKind.CHECKSUM_MISMATCH, reason="tampered"))
        summary.record(self._finished("d.json", JobStatus.SKIPPED, reason="empty"))
        summary.complete()

        assert summary.succeeded == 1
        assert summary.failed == 1
        assert summary.skipped == 2
        assert summary.documents == 5
        assert summary.failures == [
            {"unit": "b.json", "reason": "write_error: boom"},
            {"unit": "c.json", "reason": "checksum_mismatch: tampered"},
        ]

    def test_extra_failures_count_as_failed(self):
        summary = RunSummary(action="export")
        summary.add_failure("manifest.sha256", "export_error: disk full")
        assert summary.failed == 1
        assert summary.failures == [{"unit": "manifest.sha256", "reason": "export_error: disk full"}]

    def test_record_requires_finished_job(self):
        summary = RunSummary(action="export")
        with pytest.raises(ValueError):
            summary.record(Job(name="users").start())

    def test_record_from_threads(self):
        summary = RunSummary(action="export")

        def worker(i):
            summary.record(self._finished(f"c{i}", JobStatus.SUCCEEDED, processed=1))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert summary.succeeded == 20
        assert summary.documents == 20

    def test_to_dict_and_summary_text(self):
        summary = RunSummary(action="export")
        summary.record(self._finished("users", JobStatus.FAILED, kind=ErrorKind.EXPORT_ERROR, reason="boom"))
        summary.complete()

        data = summary.to_dict()
        assert data["totals"]["failed"] == 1
        assert data["failures"][0]["unit"] == "users"

        text = summary.summary()
        assert text.startswith("Export Summary")
        assert "users: export_error: boom" in text
