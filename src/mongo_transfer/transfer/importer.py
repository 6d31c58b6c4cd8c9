"""
Import pipeline: files to database collections.

Files in the data folder are processed one at a time in name order. Each
file is verified against manifest.sha256 (when present), decoded lazily and
written in batches under the configured conflict strategy. A problem with
one file is recorded in the summary and the next file is processed.
"""

import itertools
import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from ..config.config_loader import SUPPORTED_FORMATS, TransferConfig
from ..core.exceptions import (
    ChecksumError,
    DataDirectoryError,
    DocumentWriteError,
    InvalidFileNameError,
    UnitError,
)
from ..core.logging import UnitContext
from ..core.models import ErrorKind, Job, RunSummary
from .checksums import MANIFEST_FILE_NAME, ChecksumManifest, VerifyResult, digest_file, verify_digest
from .conflict import ConflictResolver, InsertResolver, get_resolver
from .csv_files import read_csv_documents
from .json_stream import read_json_documents
from .progress import NullProgressSink, ProgressSink

logger = logging.getLogger(__name__)


def collection_name_for(file_name: str, file_format: str) -> str:
    """
    Map a data file name to its target collection.

    Raises:
        InvalidFileNameError: If the name is not <collection>.<format> or the
            collection name is not one MongoDB accepts
    """
    suffix = f".{file_format}"
    if not file_name.endswith(suffix):
        raise InvalidFileNameError(
            f"Invalid file name: {file_name} (expected <collection>{suffix})", unit=file_name
        )

    name = file_name[: -len(suffix)]
    if not name:
        problem = "empty collection name"
    elif "$" in name:
        problem = "collection name contains '$'"
    elif "\0" in name:
        problem = "collection name contains a NUL character"
    elif name.startswith("system."):
        problem = "system collections cannot be imported"
    else:
        return name

    raise InvalidFileNameError(f"Invalid file name: {file_name} ({problem})", unit=file_name)


@dataclass
class DiscoveredFile:
    """A file found in the data folder and the collection it maps to."""
    path: Path
    collection: Optional[str] = None
    rejection: Optional[str] = None

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def accepted(self) -> bool:
        return self.collection is not None


class Batcher:
    """
    Groups documents into write batches.

    A batch is released when it holds `size` documents or when `interval`
    seconds have passed since the previous release. The interval is checked
    only when a document is added: while the reader is blocked on input a
    partial batch waits, and the final partial batch is released by drain().
    """

    def __init__(self, size: int, interval: float, clock: Callable[[], float] = time.monotonic):
        self.size = size
        self.interval = interval
        self.clock = clock
        self._items: List[Dict[str, Any]] = []
        self._last_flush = clock()

    def add(self, document: Dict[str, Any]) -> Optional[List[Dict[str, Any]]]:
        """Add a document; returns a batch when one is due."""
        self._items.append(document)
        if len(self._items) >= self.size or self.clock() - self._last_flush >= self.interval:
            return self.drain()
        return None

    def drain(self) -> List[Dict[str, Any]]:
        """Release whatever is pending (possibly nothing)."""
        items, self._items = self._items, []
        self._last_flush = self.clock()
        return items

    def __len__(self) -> int:
        return len(self._items)


class ImportPipeline:
    """
    Imports the files of the data folder into a database.

    Example:
        >>> with MongoSession(config) as db:
        ...     summary = ImportPipeline(db, config).run()
        >>> print(summary.summary())
    """

    def __init__(
        self,
        database: Database,
        config: TransferConfig,
        progress: Optional[ProgressSink] = None,
        run_id: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.database = database
        self.config = config
        self.progress = progress or NullProgressSink()
        self.run_id = run_id or str(uuid.uuid4())
        self.clock = clock

    def discover(self) -> List[DiscoveredFile]:
        """
        List the candidate files of the data folder in name order.

        The manifest and files of the other supported format are left out.
        Everything else is returned, rejected files with their reason.

        Raises:
            DataDirectoryError: If the data folder cannot be listed
        """
        data_dir = self.config.data_path
        if not data_dir.is_dir():
            raise DataDirectoryError(f"Data directory not found: {data_dir}", path=str(data_dir))

        fmt = self.config.file_format
        other_suffixes = {f".{other}" for other in SUPPORTED_FORMATS if other != fmt}

        try:
            entries = sorted(data_dir.iterdir(), key=lambda p: p.name)
        except OSError as e:
            raise DataDirectoryError(f"Cannot list data directory {data_dir}: {e}", path=str(data_dir)) from e

        found = []
        for entry in entries:
            if not entry.is_file() or entry.name == MANIFEST_FILE_NAME:
                continue
            if entry.suffix in other_suffixes:
                logger.debug(f"Ignoring {entry.name} (not a {fmt} file)")
                continue
            try:
                found.append(DiscoveredFile(entry, collection=collection_name_for(entry.name, fmt)))
            except InvalidFileNameError as e:
                found.append(DiscoveredFile(entry, rejection=str(e)))
        return found

    def run(self) -> RunSummary:
        """
        Import every discovered file.

        Returns:
            RunSummary with one job per discovered file

        Raises:
            DataDirectoryError: If the data folder cannot be listed
        """
        summary = RunSummary(action="import")
        files = self.discover()

        if not files:
            logger.warning(f"No {self.config.file_format.upper()} files found in the folder for import")
            return summary.complete()

        logger.info(f"Starting import run: {self.run_id}")

        entries: Mapping[str, str] = {}
        verify = False
        if self.config.verify_checksums:
            entries, verify = ChecksumManifest.load(self.config.data_path / MANIFEST_FILE_NAME)
        else:
            logger.info("Checksum verification disabled by configuration")

        for discovered in files:
            summary.record(self._import_file(discovered, entries, verify))

        summary.complete()
        logger.info(
            f"Import completed: {summary.succeeded} succeeded, {summary.failed} failed, "
            f"{summary.skipped} skipped, {summary.documents} documents"
        )
        return summary

    def _import_file(self, discovered: DiscoveredFile, entries: Mapping[str, str], verify: bool) -> Job:
        """Import one file; never raises for problems confined to the file."""
        job = Job(name=discovered.name)

        with UnitContext(unit=discovered.name, run_id=self.run_id, action="import"):
            if not discovered.accepted:
                logger.warning(f"{discovered.rejection}. Skipping.")
                job.skip(discovered.rejection, kind=ErrorKind.INVALID_FILE_NAME)
                return job

            job.start()
            self.progress.on_start(discovered.name, None)
            try:
                if verify:
                    self._verify(discovered.path, entries)

                documents = self._read(discovered.path)
                written = self._write(discovered.collection, documents, job)
                job.total_units = job.processed_units + job.duplicates

                if job.total_units == 0:
                    logger.info(f"File {discovered.name} is empty, nothing imported")
                else:
                    logger.info(
                        f"Successfully imported {written} documents to collection {discovered.collection}"
                    )
                job.succeed()

            except ChecksumError as e:
                logger.warning(f"{e}. Skipping.")
                job.skip(str(e), kind=e.kind)

            except UnitError as e:
                logger.error(f"Error importing file {discovered.name}: {e}")
                job.fail(e.kind, str(e))

            except (OSError, UnicodeDecodeError) as e:
                logger.error(f"Error reading file {discovered.name}: {e}")
                job.fail(ErrorKind.DECODE_ERROR, str(e))

            except Exception as e:
                logger.exception(f"Unexpected error importing file {discovered.name}: {e}")
                job.fail(ErrorKind.WRITE_ERROR, f"{type(e).__name__}: {e}")

            finally:
                self.progress.on_done(discovered.name, job.status)

        return job

    def _verify(self, path: Path, entries: Mapping[str, str]) -> None:
        result = verify_digest(entries, path.name, digest_file(path))
        if result == VerifyResult.MISSING:
            raise ChecksumError(f"No checksum for {path.name} in {MANIFEST_FILE_NAME}", unit=path.name, missing=True)
        if result == VerifyResult.MISMATCH:
            raise ChecksumError(f"Checksum mismatch for {path.name}", unit=path.name)
        logger.debug(f"Checksum verified for {path.name}")

    def _read(self, path: Path) -> Iterable[Dict[str, Any]]:
        if self.config.file_format == "csv":
            return read_csv_documents(path)
        return read_json_documents(path)

    def _resolver(self, collection) -> ConflictResolver:
        if not self.config.clear_collections:
            return get_resolver(self.config.conflict_strategy)

        try:
            result = collection.delete_many({})
        except PyMongoError as e:
            raise DocumentWriteError(f"Cannot clear collection {collection.name}: {e}") from e
        logger.info(f"Collection {collection.name} cleared ({result.deleted_count} documents removed)")
        return InsertResolver()

    def _write(self, collection_name: str, documents: Iterable[Dict[str, Any]], job: Job) -> int:
        """
        Write the documents in batches.

        Nothing touches the collection until the first element has been
        read, so a file that is malformed from the start leaves it as it
        was. An empty file still clears the collection when clearing is on.

        Returns:
            Number of documents written
        """
        iterator = iter(documents)
        first = next(iterator, None)
        if first is None and not self.config.clear_collections:
            return 0

        collection = self.database[collection_name]
        resolver = self._resolver(collection)
        if first is None:
            return 0

        batcher = Batcher(self.config.batch_size, self.config.flush_interval, clock=self.clock)

        written = 0
        batch_number = 0
        for document in itertools.chain([first], iterator):
            batch = batcher.add(document)
            if batch:
                batch_number += 1
                written += self._flush(resolver, collection, batch, batch_number, job)

        batch = batcher.drain()
        if batch:
            batch_number += 1
            written += self._flush(resolver, collection, batch, batch_number, job)

        return written

    def _flush(self, resolver: ConflictResolver, collection, batch, batch_number: int, job: Job) -> int:
        outcome = resolver.write_batch(collection, batch)
        job.advance(outcome.written)
        job.duplicates += outcome.duplicates + outcome.existing
        self.progress.on_advance(job.name, len(batch))
        logger.info(
            f"Imported {outcome.written} documents to collection {collection.name} (batch {batch_number})"
        )
        return outcome.written
