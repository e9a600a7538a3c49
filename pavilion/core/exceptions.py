"""Error taxonomy shared by the ingestion pipeline."""

from typing import Optional


class PavilionError(Exception):
    """Base exception for pipeline errors."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class ValidationError(PavilionError):
    """Raised when an upload request has the wrong shape.

    Detected before the pipeline runs (size, extension, title, description).
    """

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class StorageError(PavilionError):
    """Raised when the content store or object store rejects an operation."""

    pass


class PersistenceError(StorageError):
    """Raised when the final database commit fails."""

    pass


class ProcessingError(PavilionError):
    """Raised when probing, transcoding or local staging fails."""

    pass


class VideoNotFoundError(PavilionError):
    """Raised when video is not found."""

    pass


class UploadNotFoundError(PavilionError):
    """Raised when upload is not found."""

    pass


class InvalidStatusTransitionError(PavilionError):
    """Raised when an upload status change is not allowed."""

    pass
