"""
Error types raised by the reconciliation core and its adapters

Only ConfigurationError, SafetyAbortError and SyncAlreadyRunningError abort a
run. SourceError and DestinationError are caught per task and recorded as
error outcomes in the SyncResult.
"""


class SyncError(RuntimeError):
    """Base class for all sync errors"""


class ConfigurationError(SyncError):
    """Raised when the vault or sync configuration is missing or invalid"""


class SafetyAbortError(SyncError):
    """Raised when the scanned source count collapsed relative to known mappings"""

    def __init__(self, mapping_count: int, source_count: int):
        super().__init__(
            f"Safety abort: {mapping_count} known mappings but only {source_count} "
            f"tasks found in the vault. Refusing to sync (possible scan failure)."
        )
        self.mapping_count = mapping_count
        self.source_count = source_count


class SyncAlreadyRunningError(SyncError):
    """Raised when a sync is started while another one is in flight"""

    def __init__(self):
        super().__init__("A sync operation is already running")


class SourceError(SyncError):
    """A per-task failure while reading or writing the source vault"""


class MissingSourceInfoError(SourceError):
    def __init__(self, title: str):
        super().__init__(f"Task has no source information: {title}")


class SourceFileNotFoundError(SourceError):
    def __init__(self, path: str):
        super().__init__(f"File not found: {path}")
        self.path = path


class LineOutOfRangeError(SourceError):
    def __init__(self, line_number: int, total: int):
        super().__init__(f"Line number {line_number} is out of range (file has {total} lines)")
        self.line_number = line_number
        self.total = total


class ContentMismatchError(SourceError):
    """The captured line no longer matches the file; nothing was written"""

    def __init__(self, expected: str, found: str):
        super().__init__(
            "File has changed since last scan. "
            f"Expected: {expected[:50]}... Found: {found[:50]}..."
        )
        self.expected = expected
        self.found = found


class FileModifiedDuringSyncError(SourceError):
    def __init__(self, path: str):
        super().__init__(f"File was modified during sync, skipping write: {path}")
        self.path = path


class DestinationError(SyncError):
    """A failure talking to the destination task store"""
