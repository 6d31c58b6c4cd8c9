"""
Custom exceptions for the transfer module.

Fatal errors abort a run before it produces partial results. Per-unit
errors are raised inside a single collection or file and folded into that
unit's Job by the pipelines.
"""


class TransferError(Exception):
    """Base exception for all transfer errors."""
    pass


class DatabaseConnectionError(TransferError):
    """
    Cannot reach the database.
    
    Raised when:
    - The server does not answer the initial ping
    - Collections cannot be listed
    """
    
    def __init__(self, message: str, uri: str = None):
        super().__init__(message)
        self.uri = uri


class DataDirectoryError(TransferError):
    """Cannot access or create the data directory."""
    
    def __init__(self, message: str, path: str = None):
        super().__init__(message)
        self.path = path


class ConfigError(TransferError):
    """
    Error in transfer configuration.
    
    Raised when:
    - Configuration file is missing or invalid
    - Configuration values are out of valid range
    """
    pass


class UnitError(TransferError):
    """
    Base for errors confined to one collection or file.
    
    Carries the ErrorKind value recorded on the failed Job.
    """
    
    kind = "export_error"
    
    def __init__(self, message: str, unit: str = None):
        super().__init__(message)
        self.unit = unit


class InvalidFileNameError(UnitError):
    """File name does not map to a collection name."""
    
    kind = "invalid_file_name"


class ChecksumError(UnitError):
    """
    File failed manifest verification.
    
    Raised when:
    - The manifest has no entry for the file
    - The file digest differs from the manifest entry
    """
    
    def __init__(self, message: str, unit: str = None, missing: bool = False):
        super().__init__(message, unit)
        self.missing = missing
    
    @property
    def kind(self) -> str:
        return "checksum_missing" if self.missing else "checksum_mismatch"


class DocumentDecodeError(UnitError):
    """File content could not be decoded into documents."""
    
    kind = "decode_error"
    
    def __init__(self, message: str, unit: str = None, position: int = None):
        super().__init__(message, unit)
        self.position = position


class DocumentWriteError(UnitError):
    """Database rejected a batch for a reason other than a tolerated duplicate."""
    
    kind = "write_error"
