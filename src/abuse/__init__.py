# kudosguard - Recognition Abuse Detection
# AGPL-3.0 License

"""
Recognition Abuse Detection

Evaluates new recognitions for gaming patterns and returns a verdict the
recognition-creation workflow uses to store, re-weight or route to review:

1. Reciprocity - repeated or mutual praise between the same two people
2. Frequency - givers exceeding daily/weekly limits
3. Content - short or copy-pasted reasons
4. Weight manipulation - inflated weight without evidence

All signals are deterministic and threshold based. Detection fails open:
if the pipeline cannot complete, the recognition is treated as not abusive.
"""

from .config import AbuseThresholds
from .engine import AbuseDetectionEngine, DetectionOutcome
from .errors import (
    AbuseDetectionError,
    DetectionError,
    MalformedDataError,
    QueryError,
    SinkError,
)
from .models import (
    AbuseFlag,
    DetectionResult,
    FlagType,
    GiverRole,
    RecognitionEvent,
    Severity,
)
from .privacy import hash_identifier
from .report import AbuseReportGenerator
from .sink import AbuseSink
from .store import AbuseQueries, PostgresAbuseStore

__all__ = [
    "AbuseThresholds",
    "AbuseDetectionEngine",
    "DetectionOutcome",
    "AbuseDetectionError",
    "DetectionError",
    "MalformedDataError",
    "QueryError",
    "SinkError",
    "AbuseFlag",
    "DetectionResult",
    "FlagType",
    "GiverRole",
    "RecognitionEvent",
    "Severity",
    "hash_identifier",
    "AbuseReportGenerator",
    "AbuseSink",
    "AbuseQueries",
    "PostgresAbuseStore",
]

__version__ = "0.1.0"
