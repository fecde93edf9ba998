# kudosguard - Abuse Detection Errors
# AGPL-3.0 License

"""Exception types raised inside the abuse detection pipeline."""

from typing import Optional


class AbuseDetectionError(Exception):
    """Base class for abuse detection failures."""


class QueryError(AbuseDetectionError):
    """The datastore could not answer a detector's read query."""


class MalformedDataError(AbuseDetectionError):
    """A historical record came back without the fields a detector needs."""


class SinkError(AbuseDetectionError):
    """Writing flags or an audit entry failed."""


class DetectionError(AbuseDetectionError):
    """A detector (or the detection stage as a whole) did not complete."""

    def __init__(self, detector: str, cause: Optional[BaseException] = None):
        self.detector = detector
        self.cause = cause
        reason = f"{type(cause).__name__}: {cause}" if cause else "unknown error"
        super().__init__(f"{detector} detector failed ({reason})")
