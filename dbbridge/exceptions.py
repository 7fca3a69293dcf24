# dbbridge/exceptions.py
"""
Exception classes raised by dbbridge.
"""


class DbBridgeError(Exception):
    """Base class for all dbbridge errors"""


class ConfigurationError(DbBridgeError, ValueError):
    """Invalid or unresolvable configuration. Raised before any work is done."""


class OperationCancelled(DbBridgeError):
    """The caller's cancel token was set while an export or load was running."""

    def __init__(self, message: str = 'Operation cancelled', rows: int = 0):
        super().__init__(message)
        self.rows = rows


class SourceReadError(DbBridgeError):
    """Query execution or cursor fetch failed while exporting."""

    def __init__(self, message: str, rows_written: int = 0):
        super().__init__(message)
        self.rows_written = rows_written


class CopyError(DbBridgeError):
    """Bulk copy into the destination table failed."""

    def __init__(self, message: str, table: str = None, rows_committed: int = 0):
        super().__init__(message)
        self.table = table
        self.rows_committed = rows_committed
