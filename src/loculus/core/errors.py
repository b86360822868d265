class LoculusError(Exception):
    """Base error for all user-facing Loculus exceptions."""


class ConfigurationError(LoculusError):
    """Raised when configuration is invalid or incomplete."""


class ProjectNotInitializedError(LoculusError):
    """Raised when .loculus metadata is missing."""


class ValidationError(LoculusError):
    """Raised when model invariants fail."""


class EmptyContentError(ValidationError):
    """Raised when a document has no indexable content."""


class VectorDimensionMismatchError(ValidationError):
    def __init__(self, expected: int, got: int) -> None:
        super().__init__(f"Vector dimension mismatch: expected {expected}, got {got}")
        self.expected = expected
        self.got = got


class TextTooLongError(ValidationError):
    def __init__(self, length: int, max_length: int) -> None:
        super().__init__(f"Text too long for embedding: {length} characters (max {max_length})")
        self.length = length
        self.max_length = max_length


class BatchTooLargeError(ValidationError):
    def __init__(self, count: int, max_count: int) -> None:
        super().__init__(f"Embedding batch too large: {count} texts (max {max_count})")
        self.count = count
        self.max_count = max_count


class EmbeddingFailedError(LoculusError):
    """Raised when no embedding model can produce a vector for a text."""


class NotFoundError(LoculusError):
    """Raised when a referenced entity does not exist."""


class CollectionNotFoundError(NotFoundError):
    def __init__(self, collection_id: str) -> None:
        super().__init__(f"Collection not found: {collection_id}")
        self.collection_id = collection_id


class DocumentNotFoundError(NotFoundError):
    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class StorageError(LoculusError):
    """Raised when the vector store cannot complete a write."""


class IndexingFailedError(LoculusError):
    def __init__(self, document_id: str, message: str) -> None:
        super().__init__(f"Indexing failed for document {document_id}: {message}")
        self.document_id = document_id
        self.message = message


class IndexingCancelledError(IndexingFailedError):
    """Raised when indexing stops because the caller cancelled it."""


class NoRelevantChunksError(LoculusError):
    """Raised when retrieval returns nothing to ground an answer on."""


class InferenceEngineNotReadyError(LoculusError):
    """Raised when no text generator is attached or it is not ready."""


class GenerationFailedError(LoculusError):
    """Raised when the text generator fails."""


class QueryCancelledError(LoculusError):
    """Raised when a streaming query is cancelled by the caller."""
