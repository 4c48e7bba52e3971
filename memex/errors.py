"""Shared error types for memex.

Embedding and persistence failures are explicit so each layer can decide
whether to degrade (recall falls back to keyword search) or report.
"""


class MemexError(Exception):
    """Base error for memex."""


class EmbeddingError(MemexError):
    """Embedding computation failed inside the runtime."""


class EmbeddingUnavailable(EmbeddingError):
    """Embedding runtime is not initialized or failed to initialize."""


class EmbeddingTimeout(EmbeddingError):
    """An embedding request exceeded its deadline."""


class EmbeddingCancelled(EmbeddingError):
    """Pending embedding request was rejected because the client closed."""


class PersistenceWriteFailure(MemexError):
    """Writing the store blob to key-value storage failed."""


class BackupError(MemexError):
    """Backup snapshot could not be imported."""


class InvalidBackupFormat(BackupError):
    """Snapshot is not shaped like a memex backup."""


class UnsupportedBackupVersion(BackupError):
    """Snapshot version is not one this build can read."""

    def __init__(self, version: object):
        super().__init__(f"Unsupported backup version: {version}")
        self.version = version


class InvalidMemoryRecord(MemexError, ValueError):
    """Record failed validation on insert (e.g. wrong embedding dimension)."""


class DuplicateMemoryId(InvalidMemoryRecord):
    """A record with the same id is already stored."""
