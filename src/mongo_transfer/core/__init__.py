"""
Core subpackage for the transfer module.

Contains run models, exceptions, logging and filesystem utilities.
"""

from .models import ErrorKind, Job, JobStatus, RunSummary
from .exceptions import (
    TransferError,
    DatabaseConnectionError,
    DataDirectoryError,
    ConfigError,
    UnitError,
    InvalidFileNameError,
    ChecksumError,
    DocumentDecodeError,
    DocumentWriteError,
)

__all__ = [
    # Models
    "ErrorKind",
    "Job",
    "JobStatus",
    "RunSummary",
    # Exceptions
    "TransferError",
    "DatabaseConnectionError",
    "DataDirectoryError",
    "ConfigError",
    "UnitError",
    "InvalidFileNameError",
    "ChecksumError",
    "DocumentDecodeError",
    "DocumentWriteError",
]
