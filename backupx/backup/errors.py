"""
Error taxonomy for backup operations.

- SourceNotFound: declared path or connection does not exist or is unreachable
- ReadFailure: an individual file could not be read (skipped, never fatal)
- WriteFailure: destination stream could not be opened or written
- UnsupportedKind: no adapter is registered for a target kind
- CleanupFailure: retention pass could not stat or delete an artifact
"""


class BackupError(Exception):
    """Base class for all backup errors."""
    pass


class SourceNotFound(BackupError):
    """Raised when a source path or database is missing or unreachable."""
    pass


class ReadFailure(BackupError):
    """Raised when a file or archive frame cannot be read."""
    pass


class WriteFailure(BackupError):
    """Raised when an artifact cannot be opened or written."""
    pass


class UnsupportedKind(BackupError):
    """Raised when a target kind has no matching adapter."""
    pass


class CleanupFailure(BackupError):
    """Raised inside the retention pass; never escapes it."""
    pass
