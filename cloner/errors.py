"""Error taxonomy for the media cloner.

Three scopes:
- FatalStartupError: the process cannot start (config, DB, object store, lock backend).
- RunAbortError: the current run stops; the next scheduled run is unaffected.
- ItemError and subclasses: one item failed one step; siblings keep going.
"""


class ClonerError(RuntimeError):
    """Base error for the media cloner."""


class FatalStartupError(ClonerError):
    """Raised when the service cannot be constructed."""


class ConfigError(FatalStartupError):
    """Raised when the configuration file is missing, unreadable or incomplete."""


class RunAbortError(ClonerError):
    """Raised when a run cannot proceed (pending list unreadable)."""


class ItemError(ClonerError):
    """Base error for a failure scoped to a single item."""

    def __init__(self, message, item=None):
        super().__init__(message)
        self.item = item


class ItemFetchError(ItemError):
    """Raised when the source bytes cannot be fetched, classified or staged."""


class ItemUploadError(ItemError):
    """Raised when the staged artifact cannot be put into object storage."""


class ItemRecordError(ItemError):
    """Raised when the item's outcome cannot be written to the relational store."""


class ItemNotifyError(ItemError):
    """Raised when the search index rejects or cannot receive an update."""


class ItemCleanupError(ItemError):
    """Raised when the staged artifact cannot be removed."""
