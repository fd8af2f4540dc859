"""Error taxonomy shared by the pipeline stages."""

from __future__ import annotations


class YomuError(Exception):
    """Base class for every error raised by the backend."""


class ConfigurationError(YomuError):
    """A credential or setting is missing; the user has to fix it."""


class TransientServiceError(YomuError):
    """Timeout, non-success status or unreachable collaborator."""


class NoTextDetectedError(TransientServiceError):
    """OCR returned fewer than two annotations."""


class MalformedResponseError(YomuError):
    """A collaborator answered with data that fails schema expectations."""


class DuplicateNoteError(YomuError):
    """The flashcard service already holds a note for this word."""


class BusyError(YomuError):
    """A mutually exclusive operation is already running."""


class InvalidStateError(YomuError):
    """The requested transition is not allowed from the current state."""


__all__ = [
    "YomuError",
    "ConfigurationError",
    "TransientServiceError",
    "NoTextDetectedError",
    "MalformedResponseError",
    "DuplicateNoteError",
    "BusyError",
    "InvalidStateError",
]
