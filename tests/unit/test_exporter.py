"""
Unit tests for the export pipeline.

Uses the in-memory database from conftest.py.
"""

import json
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

from mongo_transfer.core.exceptions import DatabaseConnectionError, DataDirectoryError
from mongo_transfer.core.models import ErrorKind, JobStatus
from mongo_transfer.transfer.checksums import MANIFEST_FILE_NAME, ChecksumManifest, digest_file
from mongo_transfer.transfer.exporter import ExportPipeline
from mongo_transfer.transfer.progress import ProgressSink

OID = "507f1f77bcf86cd799439011"


@pytest.fixture
def populated_db(fake_db):
    fake_db.add("users", [
        {"_id": ObjectId(OID), "name": "Ann", "joinedAt": datetime(2024, 1, 1, tzinfo=timezone.utc)},
        {"_id": 2, "name": "Bob", "tags": ["x", "y"]},
    ])
    fake_db.add("orders", [{"_id": 10, "total": 9.5}])
    fake_db["empty"]
    return fake_db


class TestExportJson:
    """Tests for JSON export."""

    def test_files_and_manifest(self, populated_db, make_config, data_dir):
        summary = ExportPipeline(populated_db, make_config()).run()

        assert summary.succeeded == 2
        assert summary.skipped == 1
        assert summary.failed == 0
        assert summary.documents == 3

        users = json.loads((data_dir / "users.json").read_text())
        assert users[0] == {
            "_id": {"$oid": OID},
            "name": "Ann",
            "joinedAt": {"$date": "2024-01-01T00:00:00.000Z"},
        }
        assert users[1]["tags"] == ["x", "y"]

        entries, enabled = ChecksumManifest.load(data_dir / MANIFEST_FILE_NAME)
        assert enabled
        assert entries == {
            "orders.json": digest_file(data_dir / "orders.json"),
            "users.json": digest_file(data_dir / "users.json"),
        }
        lines = (data_dir / MANIFEST_FILE_NAME).read_text().splitlines()
        assert [line.split("  ")[1] for line in lines] == ["orders.json", "users.json"]

    def test_empty_collection_has_no_file_or_entry(self, populated_db, make_config, data_dir):
        summary = ExportPipeline(populated_db, make_config()).run()

        job = summary.get_job("empty")
        assert job.status == JobStatus.SKIPPED
        assert not job.is_error
        assert not (data_dir / "empty.json").exists()
        assert "empty.json" not in (data_dir / MANIFEST_FILE_NAME).read_text()

    def test_only_empty_collections_writes_no_manifest(self, fake_db, make_config, data_dir):
        fake_db["nothing"]
        summary = ExportPipeline(fake_db, make_config()).run()

        assert summary.skipped == 1
        assert not (data_dir / MANIFEST_FILE_NAME).exists()

    def test_no_collections(self, fake_db, make_config, caplog):
        with caplog.at_level("WARNING"):
            summary = ExportPipeline(fake_db, make_config()).run()
        assert summary.jobs == []
        assert "No collections found" in caplog.text

    def test_system_collections_are_not_exported(self, fake_db, make_config, data_dir):
        fake_db.add("system.views", [{"_id": 1}])
        fake_db.add("real", [{"_id": 1}])

        summary = ExportPipeline(fake_db, make_config()).run()

        assert [job.name for job in summary.jobs] == ["real"]
        assert not (data_dir / "system.views.json").exists()


class TestExportFailures:
    """Tests for failure isolation."""

    def test_failing_collection_does_not_stop_others(self, fake_db, make_config, data_dir):
        fake_db.add("a", [{"_id": i} for i in range(5)]).fail_find_after = 2
        fake_db.add("b", [{"_id": 1}])
        fake_db.add("c", [{"_id": 1}])

        summary = ExportPipeline(fake_db, make_config()).run()

        job = summary.get_job("a")
        assert job.status == JobStatus.FAILED
        assert job.error_kind == ErrorKind.EXPORT_ERROR
        assert "cursor died" in job.failure_reason
        assert summary.get_job("b").status == JobStatus.SUCCEEDED
        assert summary.get_job("c").status == JobStatus.SUCCEEDED
        assert summary.failures == [{"unit": "a", "reason": "export_error: cursor died"}]

        assert not (data_dir / "a.json").exists()
        manifest = (data_dir / MANIFEST_FILE_NAME).read_text()
        assert "a.json" not in manifest
        assert "b.json" in manifest and "c.json" in manifest

    def test_count_failure_is_per_collection(self, fake_db, make_config):
        fake_db.add("a", [{"_id": 1}]).fail_count = PyMongoError("not authorized")
        fake_db.add("b", [{"_id": 1}])

        summary = ExportPipeline(fake_db, make_config()).run()

        assert summary.get_job("a").status == JobStatus.FAILED
        assert summary.get_job("b").status == JobStatus.SUCCEEDED

    def test_listing_failure_is_fatal(self, fake_db, make_config):
        fake_db.fail_list = PyMongoError("connection refused")
        with pytest.raises(DatabaseConnectionError):
            ExportPipeline(fake_db, make_config()).run()

    def test_data_dir_that_is_a_file_is_fatal(self, fake_db, make_config, tmp_path):
        target = tmp_path / "file"
        target.write_text("x")
        with pytest.raises(DataDirectoryError):
            ExportPipeline(fake_db, make_config(data_folder=str(target))).run()

    def test_data_dir_is_created(self, fake_db, make_config, tmp_path):
        fake_db.add("users", [{"_id": 1}])
        target = tmp_path / "new" / "nested"

        ExportPipeline(fake_db, make_config(data_folder=str(target))).run()

        assert (target / "users.json").exists()


class TestExportOptions:
    """Tests for CSV output, clearing and progress."""

    def test_csv_export(self, populated_db, make_config, data_dir):
        summary = ExportPipeline(populated_db, make_config(file_format="csv")).run()

        assert summary.succeeded == 2
        lines = (data_dir / "users.csv").read_text().splitlines()
        assert lines[0] == "_id,name,joinedAt"
        assert lines[1] == f"{OID},Ann,2024-01-01T00:00:00.000Z"
        assert lines[2] == "2,Bob,"
        assert "users.csv" in (data_dir / MANIFEST_FILE_NAME).read_text()

    def test_clear_output_removes_old_files(self, fake_db, make_config, data_dir):
        (data_dir / "stale.json").write_text("[]")
        fake_db.add("users", [{"_id": 1}])

        ExportPipeline(fake_db, make_config(clear_output=True)).run()

        assert not (data_dir / "stale.json").exists()
        assert (data_dir / "users.json").exists()

    def test_progress_events(self, fake_db, make_config):
        fake_db.add("users", [{"_id": i} for i in range(250)])
        progress = Mock(spec=ProgressSink)

        ExportPipeline(fake_db, make_config(), progress=progress).run()

        progress.on_start.assert_called_once_with("users", 250)
        advanced = sum(call.args[1] for call in progress.on_advance.call_args_list)
        assert advanced == 250
        progress.on_done.assert_called_once_with("users", JobStatus.SUCCEEDED)
