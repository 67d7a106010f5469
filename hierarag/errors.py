"""
Error taxonomy for hierarag.

Item-level errors (an unreadable file, an unsupported document, a failed
embedding) are caught and logged by the batch that produced them.
Validation errors are raised before any I/O begins.  Search failures are
raised as :class:`SearchError` so callers can tell them apart from an
empty result list.
"""


class HierarAGError(Exception):
    """Base class for all errors raised by hierarag."""


class FileSystemError(HierarAGError):
    """A path or file could not be read."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.reason = reason
        msg = f"Cannot read {path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ValidationError(HierarAGError):
    """A required input is missing or malformed."""


class ExtractionError(HierarAGError):
    """A document is unsupported or could not be converted to text."""


class EmbeddingError(HierarAGError):
    """The embedding provider failed, timed out, or returned a bad vector."""


class SearchError(HierarAGError):
    """A search could not be executed."""


class OperationCancelled(HierarAGError):
    """Raised at the next checkpoint after a :class:`CancelToken` fires."""
