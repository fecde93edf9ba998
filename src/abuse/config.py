# kudosguard - Abuse Detection Configuration
# AGPL-3.0 License

"""
Abuse Detection Configuration

Tunable thresholds for the recognition abuse engine. The engine receives
one AbuseThresholds instance at construction and never reads the
environment itself; from_env() exists for the CLI and service bootstrap.
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class AbuseThresholds:
    """Thresholds, limits and penalty factors for abuse detection."""

    # Reciprocity detection
    reciprocity_window_days: int = 7
    reciprocity_threshold: int = 5
    mutual_exchange_threshold: int = 3

    # Frequency limits
    daily_limit: int = 10
    weekly_limit: int = 50
    monthly_limit: int = 100  # Configured only, see DESIGN.md
    daily_high_multiplier: float = 1.5

    # Weight manipulation
    weight_variance_threshold: float = 0.5
    evidenceless_high_weight_threshold: float = 2.5
    evidenceless_high_weight_cutoff: float = 3.5

    # Content analysis
    min_reason_length: int = 20
    max_duplicate_reason: int = 3
    duplicate_window_days: int = 30
    duplicate_similarity: float = 0.8

    # Severity points and bucket cutoffs
    low_severity_score: int = 1
    medium_severity_score: int = 5
    high_severity_score: int = 10
    critical_severity_score: int = 20
    medium_bucket_cutoff: int = 5
    high_bucket_cutoff: int = 10
    critical_bucket_cutoff: int = 20

    # Weight penalties (multiplicative, applied per flag)
    reciprocity_penalty: float = 0.7
    frequency_penalty: float = 0.8
    content_penalty: float = 0.9
    weight_manipulation_penalty: float = 0.3
    evidence_penalty: float = 0.4
    min_adjusted_weight: float = 0.1

    # Pipeline
    detection_timeout_seconds: float = 5.0
    audit_hash_secret: Optional[str] = None

    @classmethod
    def from_env(cls) -> "AbuseThresholds":
        """Create thresholds from ABUSE_* environment variables with defaults."""
        return cls(
            reciprocity_window_days=int(os.getenv("ABUSE_RECIPROCITY_WINDOW_DAYS", "7")),
            reciprocity_threshold=int(os.getenv("ABUSE_RECIPROCITY_THRESHOLD", "5")),
            mutual_exchange_threshold=int(
                os.getenv("ABUSE_MUTUAL_EXCHANGE_THRESHOLD", "3")
            ),
            daily_limit=int(os.getenv("ABUSE_DAILY_LIMIT", "10")),
            weekly_limit=int(os.getenv("ABUSE_WEEKLY_LIMIT", "50")),
            monthly_limit=int(os.getenv("ABUSE_MONTHLY_LIMIT", "100")),
            daily_high_multiplier=float(
                os.getenv("ABUSE_DAILY_HIGH_MULTIPLIER", "1.5")
            ),
            weight_variance_threshold=float(
                os.getenv("ABUSE_WEIGHT_VARIANCE_THRESHOLD", "0.5")
            ),
            evidenceless_high_weight_threshold=float(
                os.getenv("ABUSE_EVIDENCELESS_WEIGHT_THRESHOLD", "2.5")
            ),
            evidenceless_high_weight_cutoff=float(
                os.getenv("ABUSE_EVIDENCELESS_WEIGHT_CUTOFF", "3.5")
            ),
            min_reason_length=int(os.getenv("ABUSE_MIN_REASON_LENGTH", "20")),
            max_duplicate_reason=int(os.getenv("ABUSE_MAX_DUPLICATE_REASON", "3")),
            duplicate_window_days=int(os.getenv("ABUSE_DUPLICATE_WINDOW_DAYS", "30")),
            duplicate_similarity=float(os.getenv("ABUSE_DUPLICATE_SIMILARITY", "0.8")),
            low_severity_score=int(os.getenv("ABUSE_LOW_SEVERITY_SCORE", "1")),
            medium_severity_score=int(os.getenv("ABUSE_MEDIUM_SEVERITY_SCORE", "5")),
            high_severity_score=int(os.getenv("ABUSE_HIGH_SEVERITY_SCORE", "10")),
            critical_severity_score=int(
                os.getenv("ABUSE_CRITICAL_SEVERITY_SCORE", "20")
            ),
            medium_bucket_cutoff=int(os.getenv("ABUSE_MEDIUM_BUCKET_CUTOFF", "5")),
            high_bucket_cutoff=int(os.getenv("ABUSE_HIGH_BUCKET_CUTOFF", "10")),
            critical_bucket_cutoff=int(os.getenv("ABUSE_CRITICAL_BUCKET_CUTOFF", "20")),
            reciprocity_penalty=float(os.getenv("ABUSE_RECIPROCITY_PENALTY", "0.7")),
            frequency_penalty=float(os.getenv("ABUSE_FREQUENCY_PENALTY", "0.8")),
            content_penalty=float(os.getenv("ABUSE_CONTENT_PENALTY", "0.9")),
            weight_manipulation_penalty=float(
                os.getenv("ABUSE_WEIGHT_MANIPULATION_PENALTY", "0.3")
            ),
            evidence_penalty=float(os.getenv("ABUSE_EVIDENCE_PENALTY", "0.4")),
            min_adjusted_weight=float(os.getenv("ABUSE_MIN_ADJUSTED_WEIGHT", "0.1")),
            detection_timeout_seconds=float(
                os.getenv("ABUSE_DETECTION_TIMEOUT", "5.0")
            ),
            audit_hash_secret=os.getenv("ABUSE_AUDIT_HASH_SECRET") or None,
        )
