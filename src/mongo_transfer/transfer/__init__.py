"""
Transfer subpackage: codecs, file formats and the export/import pipelines.
"""

from .checksums import MANIFEST_FILE_NAME, ChecksumManifest, VerifyResult, verify, verify_folder
from .conflict import ConflictStrategy, WriteOutcome, get_resolver
from .exporter import ExportPipeline
from .importer import Batcher, ImportPipeline
from .mongo_client import MongoSession
from .progress import LoggingProgressSink, NullProgressSink, ProgressSink, TqdmProgressSink

__all__ = [
    # Checksums
    "MANIFEST_FILE_NAME",
    "ChecksumManifest",
    "VerifyResult",
    "verify",
    "verify_folder",
    # Writing
    "ConflictStrategy",
    "WriteOutcome",
    "get_resolver",
    # Pipelines
    "ExportPipeline",
    "ImportPipeline",
    "Batcher",
    "MongoSession",
    # Progress
    "ProgressSink",
    "NullProgressSink",
    "LoggingProgressSink",
    "TqdmProgressSink",
]
