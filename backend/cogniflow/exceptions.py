"""Custom exception classes for document conversion."""
from typing import List, Optional


class CogniFlowError(Exception):
    """Base exception for document conversion errors."""
    pass


class ConfigurationError(CogniFlowError):
    """Raised when settings are invalid or a credential is missing."""
    pass


class ValidationError(CogniFlowError):
    """Raised when document validation fails."""
    pass


class FileTypeNotSupportedError(ValidationError):
    """Raised when an unsupported file type is encountered."""
    pass


class FileSizeExceededError(ValidationError):
    """Raised when file size exceeds the maximum allowed."""
    pass


class DocumentCorruptedError(ValidationError):
    """Raised when a document file appears to be corrupted."""
    pass


class DocumentEmptyError(ValidationError):
    """Raised when a document has no extractable content."""
    pass


class PageLimitExceededError(ValidationError):
    """Raised when document exceeds maximum page limit."""
    pass


class ExtractionError(CogniFlowError):
    """Raised when text extraction from a document fails."""
    pass


class InferenceError(CogniFlowError):
    """Base class for a single failed completion attempt."""

    def __init__(self, message: str, model: Optional[str] = None):
        super().__init__(message)
        self.model = model


class TransportFailure(InferenceError):
    """Raised on network, timeout or non-success HTTP errors."""
    pass


class EmptyOrBlockedResponse(InferenceError):
    """Raised when the provider answers without usable content."""
    pass


class AllModelsExhausted(CogniFlowError):
    """Raised when every model in the priority list failed once."""

    def __init__(
        self,
        message: str,
        attempted_models: Optional[List[str]] = None,
        last_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.attempted_models = attempted_models or []
        self.last_error = last_error


class ChunkTerminalFailure(CogniFlowError):
    """Raised when a chunk is still failing after all retries."""

    def __init__(self, chunk_id: int, message: str):
        super().__init__(message)
        self.chunk_id = chunk_id


class NothingToAssemble(CogniFlowError):
    """Raised when output is requested but no chunk is completed."""
    pass


class JobStateError(CogniFlowError):
    """Raised on an illegal job state transition or when no job exists."""
    pass


class StorageError(CogniFlowError):
    """Raised when reading or writing persisted state fails."""
    pass
