"""Error taxonomy shared by the OpenAssist core."""

from __future__ import annotations


class OpenAssistError(RuntimeError):
    """Base class for all errors raised by the core."""


class ValidationFailure(OpenAssistError):
    """Raised when caller input is malformed or violates a limit."""


class NotFound(OpenAssistError):
    """Raised when an operation requires an entity that does not exist."""


class DimensionMismatch(OpenAssistError, ValueError):
    """Raised when two vectors of different lengths are compared."""

    def __init__(self, left: int, right: int) -> None:
        super().__init__(f"Vector dimensions differ: {left} != {right}")
        self.left = left
        self.right = right


class CapabilityFailure(OpenAssistError):
    """Raised when an external capability call errors or returns an unusable result."""

    def __init__(self, capability: str, operation: str, message: str) -> None:
        super().__init__(f"{capability}.{operation} failed: {message}")
        self.capability = capability
        self.operation = operation
        self.upstream_message = message


class EmbeddingFailure(CapabilityFailure):
    """Raised when the embedding capability cannot produce vectors."""

    def __init__(self, message: str, *, operation: str = "embed") -> None:
        super().__init__("embedding", operation, message)


class IngestFailure(CapabilityFailure):
    """Raised when a document cannot be fully indexed."""

    def __init__(self, message: str) -> None:
        super().__init__("knowledge_base", "add_document", message)


class KnowledgeBaseFailure(CapabilityFailure):
    """Raised when a knowledge-base query cannot be grounded."""

    def __init__(self, message: str) -> None:
        super().__init__("knowledge_base", "query", message)


__all__ = [
    "CapabilityFailure",
    "DimensionMismatch",
    "EmbeddingFailure",
    "IngestFailure",
    "KnowledgeBaseFailure",
    "NotFound",
    "OpenAssistError",
    "ValidationFailure",
]
