"""
Checksum manifest for exported files.

manifest.sha256 holds one "<sha256 hex>  <file name>" line per exported file
(the layout sha256sum uses), so a data folder can also be checked by hand
with `sha256sum -c manifest.sha256`.
"""

import hashlib
import logging
import re
from enum import Enum
from pathlib import Path
from typing import Dict, Mapping, Tuple, Union

from ..config.config_loader import SUPPORTED_FORMATS
from ..core.exceptions import DataDirectoryError
from ..core.models import ErrorKind, Job, RunSummary

logger = logging.getLogger(__name__)

MANIFEST_FILE_NAME = "manifest.sha256"

_LINE_PATTERN = re.compile(r"([0-9a-fA-F]{64})  (.+)")
_CHUNK_SIZE = 65536

DATA_SUFFIXES = tuple(f".{fmt}" for fmt in SUPPORTED_FORMATS)


class VerifyResult(str, Enum):
    """Outcome of checking one file against the manifest."""
    MATCH = "match"
    MISMATCH = "mismatch"
    MISSING = "missing"


def digest(data: bytes) -> str:
    """
    Compute the SHA256 digest of file content.

    Returns:
        Hex-encoded SHA256 hash (64 characters)
    """
    return hashlib.sha256(data).hexdigest()


def digest_file(path: Union[str, Path]) -> str:
    """Same digest as digest(path.read_bytes()), read in chunks."""
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def verify(entries: Mapping[str, str], file_name: str, data: bytes) -> VerifyResult:
    """
    Check file content against its manifest entry.

    Args:
        entries: {file name: digest} as returned by ChecksumManifest.load
        file_name: Bare file name (no directory)
        data: File content
    """
    return verify_digest(entries, file_name, digest(data))


def verify_digest(entries: Mapping[str, str], file_name: str, actual: str) -> VerifyResult:
    """verify() for a digest that was already computed."""
    expected = entries.get(file_name)
    if expected is None:
        return VerifyResult.MISSING
    if expected.lower() != actual.lower():
        return VerifyResult.MISMATCH
    return VerifyResult.MATCH


class ChecksumManifest:
    """
    Accumulates file digests during export and reads them back on import.

    add() may be called from several export workers; the caller serializes
    access (the export pipeline holds a lock around it).
    """

    def __init__(self, entries: Mapping[str, str] = None):
        self.entries: Dict[str, str] = dict(entries or {})

    def add(self, file_name: str, file_digest: str) -> None:
        self.entries[file_name] = file_digest.lower()

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, file_name: str) -> bool:
        return file_name in self.entries

    def render(self) -> str:
        """Manifest text, sorted by file name, newline-terminated."""
        return "".join(
            f"{self.entries[name]}  {name}\n" for name in sorted(self.entries)
        )

    def write(self, path: Union[str, Path]) -> Path:
        """Write the manifest file in one go."""
        path = Path(path)
        with open(path, "w", encoding="utf-8", newline="\n") as f:
            f.write(self.render())
        logger.info(f"Checksum file {path.name} generated ({len(self.entries)} entries)")
        return path

    @staticmethod
    def parse(text: str) -> Dict[str, str]:
        """Parse manifest text; malformed lines are logged and ignored."""
        entries: Dict[str, str] = {}
        for line_num, line in enumerate(text.splitlines(), 1):
            line = line.rstrip("\r")
            if not line.strip():
                continue
            match = _LINE_PATTERN.fullmatch(line)
            if match is None:
                logger.warning(f"Ignoring malformed manifest line {line_num}: {line!r}")
                continue
            file_digest, file_name = match.groups()
            entries[file_name] = file_digest.lower()
        return entries

    @classmethod
    def load(cls, path: Union[str, Path]) -> Tuple[Dict[str, str], bool]:
        """
        Load a manifest file.

        Returns:
            (entries, enabled). enabled is False when the file is missing or
            holds no valid entries, in which case verification is skipped.
        """
        path = Path(path)
        if not path.is_file():
            logger.info(f"No checksum file at {path}; verification disabled")
            return {}, False

        with open(path, "r", encoding="utf-8-sig") as f:
            entries = cls.parse(f.read())

        if not entries:
            logger.warning(f"Checksum file {path} has no entries; verification disabled")
            return {}, False

        logger.info(f"Loaded {len(entries)} checksums from {path.name}")
        return entries, True


def verify_folder(folder: Union[str, Path]) -> RunSummary:
    """
    Check every data file (.json, .csv) of a folder against its manifest.

    Files without an entry and files whose digest differs fail; entries
    whose file is gone are reported as extra failures. A folder without a
    usable manifest fails as a whole.

    Raises:
        DataDirectoryError: If the folder does not exist
    """
    folder = Path(folder)
    if not folder.is_dir():
        raise DataDirectoryError(f"Data directory not found: {folder}", path=str(folder))

    summary = RunSummary(action="verify")
    entries, enabled = ChecksumManifest.load(folder / MANIFEST_FILE_NAME)
    if not enabled:
        summary.add_failure(
            MANIFEST_FILE_NAME,
            f"{ErrorKind.CHECKSUM_MISSING.value}: no usable checksum file in {folder}",
        )
        return summary.complete()

    present = set()
    for path in sorted(folder.iterdir(), key=lambda p: p.name):
        if not path.is_file() or path.suffix not in DATA_SUFFIXES:
            continue
        present.add(path.name)

        job = Job(name=path.name).start()
        result = verify_digest(entries, path.name, digest_file(path))
        if result == VerifyResult.MATCH:
            job.succeed()
        elif result == VerifyResult.MISMATCH:
            logger.warning(f"Checksum mismatch for {path.name}")
            job.fail(ErrorKind.CHECKSUM_MISMATCH, "digest differs from manifest entry")
        else:
            logger.warning(f"No checksum for {path.name}")
            job.fail(ErrorKind.CHECKSUM_MISSING, "no manifest entry")
        summary.record(job)

    for name in sorted(set(entries) - present):
        logger.warning(f"{name} is listed in {MANIFEST_FILE_NAME} but not present")
        summary.add_failure(name, "file listed in manifest not found")

    return summary.complete()
