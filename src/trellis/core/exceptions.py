"""Custom exceptions for Trellis.

All Trellis-specific exceptions inherit from TrellisError.
"""


class TrellisError(Exception):
    """Base exception for Trellis errors."""

    pass


class PersistenceError(TrellisError):
    """Error during knowledge graph persistence operations.

    Raised when saving, loading or restoring graph files fails
    due to I/O errors or corrupted data.
    """

    pass


class MarkerMismatchError(PersistenceError):
    """A storage file exists but does not carry the expected marker line.

    Raised before any write so that unrelated files are never overwritten.
    """

    pass


class BackupNotFoundError(PersistenceError):
    """No backup matches the requested kind or timestamp."""

    pass


class ConfigError(TrellisError):
    """Error during configuration loading.

    Raised when the config file has invalid TOML syntax
    or a value outside its allowed range.
    """

    pass


class AnalysisError(TrellisError):
    """Error raised when a temporal query cannot be evaluated."""

    pass
