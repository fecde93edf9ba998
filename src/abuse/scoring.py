# kudosguard - Severity Aggregation and Weight Adjustment
# AGPL-3.0 License

"""
Pure scoring stages of the abuse pipeline.

Severity aggregation:
  total_score = sum(points[flag.severity] for flag in flags)
  bucket = CRITICAL if total >= 20, HIGH if >= 10, MEDIUM if >= 5, else LOW

Weight adjustment:
  adjusted = weight * prod(penalty[flag.flag_type] for flag in flags)
  adjusted = round(max(0.1, adjusted), 2)
"""

from typing import Iterable, Optional

from .config import AbuseThresholds
from .models import AbuseFlag, FlagType, Severity

REASON_CODES = {
    FlagType.RECIPROCITY: "Excessive reciprocity pattern detected",
    FlagType.FREQUENCY: "Recognition frequency exceeds normal patterns",
    FlagType.CONTENT: "Similar or duplicate recognition content",
    FlagType.WEIGHT_MANIPULATION: "Unusual weight patterns detected",
    FlagType.EVIDENCE: "Weight-evidence ratio suspicious",
    FlagType.MANUAL: "Administrative weight adjustment",
}

UNKNOWN_REASON = "Unknown reason"


def severity_points(severity: Severity, thresholds: AbuseThresholds) -> int:
    points = {
        Severity.LOW: thresholds.low_severity_score,
        Severity.MEDIUM: thresholds.medium_severity_score,
        Severity.HIGH: thresholds.high_severity_score,
        Severity.CRITICAL: thresholds.critical_severity_score,
    }
    return points[severity]


def bucket_for_score(score: int, thresholds: AbuseThresholds) -> Severity:
    if score >= thresholds.critical_bucket_cutoff:
        return Severity.CRITICAL
    if score >= thresholds.high_bucket_cutoff:
        return Severity.HIGH
    if score >= thresholds.medium_bucket_cutoff:
        return Severity.MEDIUM
    return Severity.LOW


def aggregate_severity(
    flags: Iterable[AbuseFlag],
    thresholds: Optional[AbuseThresholds] = None,
) -> tuple[Severity, int]:
    """
    Reduce a flag set to a severity bucket.

    Args:
        flags: Flags raised for one recognition
        thresholds: Point values and cutoffs (defaults if omitted)

    Returns:
        (severity bucket, total score)
    """
    thresholds = thresholds or AbuseThresholds()
    total = sum(severity_points(flag.severity, thresholds) for flag in flags)
    return bucket_for_score(total, thresholds), total


def penalty_factor(flag_type: FlagType, thresholds: AbuseThresholds) -> float:
    factors = {
        FlagType.RECIPROCITY: thresholds.reciprocity_penalty,
        FlagType.FREQUENCY: thresholds.frequency_penalty,
        FlagType.CONTENT: thresholds.content_penalty,
        FlagType.WEIGHT_MANIPULATION: thresholds.weight_manipulation_penalty,
        FlagType.EVIDENCE: thresholds.evidence_penalty,
    }
    # Manual flags route to review without an automatic penalty
    return factors.get(flag_type, 1.0)


def adjust_weight(
    original_weight: float,
    flags: Iterable[AbuseFlag],
    thresholds: Optional[AbuseThresholds] = None,
) -> float:
    """
    Apply per-flag multiplicative penalties to a recognition weight.

    The result is floored at min_adjusted_weight and rounded to 2 decimals.
    """
    thresholds = thresholds or AbuseThresholds()
    adjusted = original_weight
    for flag in flags:
        adjusted *= penalty_factor(flag.flag_type, thresholds)
    return round(max(thresholds.min_adjusted_weight, adjusted), 2)


def reason_codes_for(flags: Iterable[AbuseFlag]) -> list[str]:
    """Map each flag to its user-facing reason string."""
    return [REASON_CODES.get(flag.flag_type, UNKNOWN_REASON) for flag in flags]
