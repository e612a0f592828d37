"""
Error taxonomy shared by every pipeline stage.
"""

from typing import Optional


class MicroLessonError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(MicroLessonError):
    """Input rejected before any record was created."""

    def __init__(self, message: str, constraint: Optional[str] = None):
        super().__init__(message)
        self.constraint = constraint
        self.message = message


class ExternalServiceError(MicroLessonError):
    """A collaborator timed out, was unreachable or returned malformed data."""

    def __init__(self, message: str, service: Optional[str] = None):
        super().__init__(message)
        self.service = service


class MediaProcessingError(MicroLessonError):
    """The media encoder failed to probe, cut or render."""


class AlignmentError(MicroLessonError):
    """Generated text could not be mapped onto the source timeline with enough confidence."""


class ConflictError(MicroLessonError):
    """An operation clashes with the current state of a record."""


class NotFoundError(MicroLessonError):
    """A requested record does not exist."""
