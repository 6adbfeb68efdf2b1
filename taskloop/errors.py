"""Exception hierarchy shared across TaskLoop."""


class TaskLoopError(Exception):
    """Base class for TaskLoop errors."""


class ConfigError(TaskLoopError):
    """Raised when there's a configuration error."""


class ProviderError(TaskLoopError):
    """Raised when a completion call fails."""


class EmbeddingError(TaskLoopError):
    """Raised when an embedding call fails."""


class VectorStoreError(TaskLoopError):
    """Raised when the vector store rejects or fails a request."""
