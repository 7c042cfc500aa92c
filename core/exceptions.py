"""
Exception types raised by the knowledge-graph pipeline.
"""


class GraphRAGError(Exception):
    """Base class for pipeline errors."""


class InvalidQueryModeError(GraphRAGError, ValueError):
    """Raised when a query names an empty or unknown retrieval mode."""


class StorageError(GraphRAGError):
    """Raised when a storage backend cannot complete an operation."""

