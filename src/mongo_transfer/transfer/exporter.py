"""
Export pipeline: database collections to files.

Each collection is written to <data folder>/<collection>.<format> by its own
worker. Every file produced is hashed after it is closed and the digests are
written to manifest.sha256 once all collections have finished.
"""

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from ..config.config_loader import TransferConfig
from ..core.exceptions import DatabaseConnectionError
from ..core.logging import UnitContext
from ..core.models import ErrorKind, Job, RunSummary
from ..core.utils import clear_folder, ensure_folder_exists
from .checksums import MANIFEST_FILE_NAME, ChecksumManifest, digest_file
from .csv_files import build_rows, write_csv_rows
from .json_stream import JsonArrayWriter
from .progress import NullProgressSink, ProgressSink

logger = logging.getLogger(__name__)

# Documents read between two progress events
PROGRESS_STEP = 100


class ExportPipeline:
    """
    Exports every collection of a database to the data folder.

    A failing collection is recorded in the summary and the others carry on.
    Only setup problems (data folder, listing collections) raise.
    """

    def __init__(
        self,
        database: Database,
        config: TransferConfig,
        progress: Optional[ProgressSink] = None,
        run_id: Optional[str] = None,
    ):
        self.database = database
        self.config = config
        self.progress = progress or NullProgressSink()
        self.run_id = run_id or str(uuid.uuid4())

        self.manifest = ChecksumManifest()
        self._manifest_lock = threading.Lock()

    def run(self) -> RunSummary:
        """
        Export all collections.

        Returns:
            RunSummary with one job per collection

        Raises:
            DataDirectoryError: If the data folder cannot be created or cleared
            DatabaseConnectionError: If the collections cannot be listed
        """
        summary = RunSummary(action="export")
        data_dir = ensure_folder_exists(self.config.data_path)

        if self.config.clear_output:
            clear_folder(data_dir)

        names = self._list_collections()
        if not names:
            logger.warning("No collections found in the database for export")
            return summary.complete()

        logger.info(f"Starting export run: {self.run_id}")
        logger.info(f"Found collections: {', '.join(names)}")

        workers = min(self.config.max_workers, len(names))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="export") as executor:
            futures = [
                executor.submit(self._export_collection, name, data_dir)
                for name in names
            ]
            for future in futures:
                summary.record(future.result())

        self._write_manifest(data_dir, summary)

        summary.complete()
        logger.info(
            f"Export completed: {summary.succeeded} succeeded, {summary.failed} failed, "
            f"{summary.skipped} skipped, {summary.documents} documents"
        )
        return summary

    def _list_collections(self):
        try:
            names = self.database.list_collection_names()
        except PyMongoError as e:
            raise DatabaseConnectionError(f"Cannot list collections: {e}") from e

        exported = []
        for name in sorted(names):
            if name.startswith("system."):
                logger.debug(f"Skipping system collection {name}")
                continue
            exported.append(name)
        return exported

    def _export_collection(self, name: str, data_dir: Path) -> Job:
        """Export one collection; never raises."""
        job = Job(name=name)
        path = data_dir / f"{name}.{self.config.file_format}"

        with UnitContext(unit=name, run_id=self.run_id, action="export"):
            try:
                total = self.database[name].count_documents({})
                job.start(total)

                if total == 0:
                    logger.info(f"Collection {name} is empty, skipping")
                    job.skip("empty collection")
                    return job

                self.progress.on_start(name, total)
                started = time.monotonic()

                if self.config.file_format == "csv":
                    written = self._write_csv(name, path, job)
                else:
                    written = self._write_json(name, path, job)

                if written == 0:
                    logger.info(f"Collection {name} returned no documents, skipping")
                    path.unlink(missing_ok=True)
                    job.skip("empty collection")
                    return job

                file_digest = digest_file(path)
                with self._manifest_lock:
                    self.manifest.add(path.name, file_digest)

                elapsed = time.monotonic() - started
                rate = written / elapsed if elapsed > 0 else float(written)
                logger.info(
                    f"Exported {written} documents from {name} to {path.name} "
                    f"in {elapsed:.2f}s ({rate:.2f} docs/s)"
                )
                job.succeed()

            except Exception as e:
                logger.error(f"Error exporting collection {name}: {e}")
                _remove_partial(path)
                job.fail(ErrorKind.EXPORT_ERROR, str(e))

            finally:
                if job.total_units:
                    self.progress.on_done(name, job.status)

        return job

    def _read_documents(self, name: str, job: Job):
        """Iterate the collection in natural order, reporting progress."""
        pending = 0
        with self.database[name].find({}, batch_size=self.config.batch_size) as cursor:
            for document in cursor:
                job.advance(1)
                pending += 1
                if pending >= PROGRESS_STEP:
                    self.progress.on_advance(name, pending)
                    pending = 0
                yield document
        if pending:
            self.progress.on_advance(name, pending)

    def _write_json(self, name: str, path: Path, job: Job) -> int:
        with JsonArrayWriter(path) as writer:
            for document in self._read_documents(name, job):
                writer.write(document)
        return writer.count

    def _write_csv(self, name: str, path: Path, job: Job) -> int:
        # The header comes from the first document, so rows are built up front.
        rows = build_rows(self._read_documents(name, job))
        if not rows:
            return 0
        return write_csv_rows(path, rows)

    def _write_manifest(self, data_dir: Path, summary: RunSummary) -> None:
        if not len(self.manifest):
            logger.info("No files exported; checksum file not written")
            return

        logger.info("Generating checksum file...")
        try:
            self.manifest.write(data_dir / MANIFEST_FILE_NAME)
        except OSError as e:
            logger.error(f"Error writing {MANIFEST_FILE_NAME}: {e}")
            summary.add_failure(MANIFEST_FILE_NAME, f"{ErrorKind.EXPORT_ERROR.value}: {e}")


def _remove_partial(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not remove partial file {path}: {e}")
