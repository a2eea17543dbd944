"""Exceptions raised by the import pipeline."""
from domain.models import ImportErrorCode

__all__ = [
    "ImportErrorCode",
    "ImportValidationError",
    "InvalidTimelineJSONError",
    "TimelineFormatError",
    "PayloadTooLargeError",
    "JobNotFoundError",
    "ImportJobFailedError",
]


class ImportValidationError(ValueError):
    """Input was rejected before any processing happened."""


class InvalidTimelineJSONError(ImportValidationError):
    pass


class TimelineFormatError(ImportValidationError):
    """JSON parsed but matches none of the supported export shapes."""


class PayloadTooLargeError(ImportValidationError):
    def __init__(self, size_bytes: int, max_bytes: int):
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes
        super().__init__(
            f"Import payload is {size_bytes} bytes; the maximum is {max_bytes} bytes"
        )


class JobNotFoundError(LookupError):
    pass


class ImportJobFailedError(RuntimeError):
    """Raised by the worker when an import run reports success=False."""
