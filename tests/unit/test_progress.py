"""
Unit tests for progress sinks.
"""

import io
import threading

from mongo_transfer.core.models import JobStatus
from mongo_transfer.transfer.progress import LoggingProgressSink, NullProgressSink, TqdmProgressSink


class TestLoggingProgressSink:
    def test_logs_start_milestones_and_done(self, caplog):
        sink = LoggingProgressSink(log_every=10)

        with caplog.at_level("INFO"):
            sink.on_start("users", 25)
            for _ in range(5):
                sink.on_advance("users", 5)
            sink.on_done("users", JobStatus.SUCCEEDED)

        messages = [record.getMessage() for record in caplog.records]
        assert messages[0] == "Started users (25 documents)"
        assert "users: 10/25 documents (40%)" in messages
        assert "users: 20/25 documents (80%)" in messages
        assert messages[-1] == "Finished users: succeeded (25 documents)"

    def test_unknown_total(self, caplog):
        sink = LoggingProgressSink(log_every=2)
        with caplog.at_level("INFO"):
            sink.on_start("a.json", None)
            sink.on_advance("a.json", 3)
        assert "a.json: 3 documents" in caplog.text


class TestTqdmProgressSink:
    def test_bars_per_unit(self):
        sink = TqdmProgressSink(file=io.StringIO())

        sink.on_start("a", 10)
        sink.on_start("b", None)
        sink.on_advance("a", 4)
        assert sink._bars["a"].n == 4

        sink.on_done("a", JobStatus.FAILED)
        assert "a" not in sink._bars
        sink.close()
        assert sink._bars == {}

    def test_concurrent_updates(self):
        sink = TqdmProgressSink(file=io.StringIO())
        sink.on_start("a", 1000)

        threads = [threading.Thread(target=lambda: [sink.on_advance("a", 1) for _ in range(100)])
                   for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sink._bars["a"].n == 1000
        sink.close()

    def test_events_for_unknown_units_are_ignored(self):
        sink = TqdmProgressSink(file=io.StringIO())
        sink.on_advance("ghost", 1)
        sink.on_done("ghost", JobStatus.SUCCEEDED)


def test_null_sink_accepts_everything():
    sink = NullProgressSink()
    sink.on_start("x", 1)
    sink.on_advance("x", 1)
    sink.on_done("x", JobStatus.SKIPPED)
    sink.close()
