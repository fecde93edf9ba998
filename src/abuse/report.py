# kudosguard - Abuse Report
# AGPL-3.0 License

"""
Moderator abuse report.

Summarizes stored abuse flags for a date range:
- Statistics: totals, pending/critical counts, breakdowns, weight reductions
- Suggested actions: pending flags grouped per recognition, ranked by risk
- Trends: top flag types and flags per day

Risk scoring for suggested actions:
  risk = sum(LOW 1, MEDIUM 3, HIGH 7, CRITICAL 15) + (2 * flag_count if flag_count > 1)
  priority: >= 20 CRITICAL, >= 10 HIGH, >= 5 MEDIUM, else LOW
"""

import logging
from collections import Counter, defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .models import FlagStatus, FlagType, Severity
from .sink import ABUSE_REPORT_GENERATED

logger = logging.getLogger("kudosguard.abuse.report")

DATE_RANGES = ("today", "7d", "30d", "90d", "all")

RISK_WEIGHTS = {
    Severity.LOW.value: 1,
    Severity.MEDIUM.value: 3,
    Severity.HIGH.value: 7,
    Severity.CRITICAL.value: 15,
}

MAX_SUGGESTED_ACTIONS = 50
TOP_FLAG_TYPES = 5


def range_start(date_range: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Start of a named date range, or None for 'all'."""
    now = now or datetime.now(timezone.utc)
    if date_range == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    days = {"7d": 7, "30d": 30, "90d": 90}.get(date_range)
    if days is not None:
        return now - timedelta(days=days)
    if date_range == "all":
        return None
    raise ValueError(f"Unknown date range: {date_range} (expected one of {DATE_RANGES})")


@dataclass
class WeightAdjustmentSummary:
    total_adjustments: int = 0
    average_reduction: float = 0.0
    total_weight_reduced: float = 0.0


@dataclass
class AbuseStatistics:
    total_flags: int = 0
    pending_review: int = 0
    resolved_today: int = 0
    critical_flags: int = 0
    flags_by_type: dict[str, int] = field(default_factory=dict)
    flags_by_severity: dict[str, int] = field(default_factory=dict)
    recognitions_affected: int = 0
    weight_adjustments: WeightAdjustmentSummary = field(
        default_factory=WeightAdjustmentSummary
    )


@dataclass
class SuggestedAction:
    recognition_id: str
    flag_ids: list
    priority: Severity
    action: str  # 'ESCALATE', 'ADJUST_WEIGHT', 'DISMISS', 'APPROVE'
    reasoning: str
    risk_score: int
    flag_types: list[str] = field(default_factory=list)
    severities: list[str] = field(default_factory=list)


@dataclass
class AbuseReport:
    generated_at: datetime
    date_range: str
    statistics: AbuseStatistics
    suggested_actions: list[SuggestedAction] = field(default_factory=list)
    top_flag_types: list[dict] = field(default_factory=list)
    flags_over_time: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["generated_at"] = self.generated_at.isoformat()
        for action in data["suggested_actions"]:
            action["priority"] = action["priority"].value
        return data


# ===== Statistics =====


def build_statistics(flags: list[dict], resolved_today: int = 0) -> AbuseStatistics:
    """Aggregate flag records into report statistics."""
    by_type = Counter(f["flag_type"] for f in flags)
    by_severity = Counter(f["severity"] for f in flags)

    # Weight figures are stored on every flag of a recognition; count each once
    reductions = {}
    for f in flags:
        original = f.get("original_weight")
        adjusted = f.get("adjusted_weight")
        if original is not None and adjusted is not None:
            reductions[f["recognition_id"]] = original - adjusted

    total_reduced = sum(reductions.values())
    count = len(reductions)

    return AbuseStatistics(
        total_flags=len(flags),
        pending_review=sum(1 for f in flags if f["status"] == FlagStatus.PENDING.value),
        resolved_today=resolved_today,
        critical_flags=by_severity.get(Severity.CRITICAL.value, 0),
        flags_by_type=dict(by_type),
        flags_by_severity=dict(by_severity),
        recognitions_affected=len({f["recognition_id"] for f in flags}),
        weight_adjustments=WeightAdjustmentSummary(
            total_adjustments=count,
            average_reduction=round(total_reduced / count, 2) if count else 0.0,
            total_weight_reduced=round(total_reduced, 2),
        ),
    )


# ===== Suggested actions =====


def group_risk_score(flags: list[dict]) -> int:
    score = sum(RISK_WEIGHTS.get(f["severity"], 0) for f in flags)
    if len(flags) > 1:
        score += len(flags) * 2
    return score


def risk_priority(score: int) -> Severity:
    if score >= 20:
        return Severity.CRITICAL
    if score >= 10:
        return Severity.HIGH
    if score >= 5:
        return Severity.MEDIUM
    return Severity.LOW


def suggest_action(flags: list[dict], risk_score: int) -> str:
    severe = any(
        f["severity"] in (Severity.HIGH.value, Severity.CRITICAL.value) for f in flags
    )
    weight_issue = any(
        f["flag_type"] == FlagType.WEIGHT_MANIPULATION.value for f in flags
    )

    if risk_score >= 20 or (severe and len(flags) > 2):
        return "ESCALATE"
    if weight_issue or risk_score >= 10:
        return "ADJUST_WEIGHT"
    if risk_score <= 3 and all(f["severity"] == Severity.LOW.value for f in flags):
        return "DISMISS"
    return "APPROVE"


def explain_action(flags: list[dict], action: str) -> str:
    types = ", ".join(dict.fromkeys(f["flag_type"] for f in flags))
    worst = max((Severity(f["severity"]) for f in flags), key=lambda s: s.rank)

    if action == "ESCALATE":
        return (
            f"High-risk case with {worst.value} severity flags: {types}. "
            f"Requires senior admin review."
        )
    if action == "ADJUST_WEIGHT":
        return (
            f"Weight manipulation or multiple flags detected: {types}. "
            f"Consider reducing weight."
        )
    if action == "DISMISS":
        return f"Low-risk case with minor issues: {types}. Likely false positive."
    return f"Moderate risk with {types} flags. Review and approve if justified."


def build_suggested_actions(flags: list[dict]) -> list[SuggestedAction]:
    """Group pending flags per recognition and rank them for moderators."""
    groups: dict[str, list[dict]] = defaultdict(list)
    for f in flags:
        if f["status"] == FlagStatus.PENDING.value:
            groups[f["recognition_id"]].append(f)

    actions = []
    for recognition_id, group in groups.items():
        score = group_risk_score(group)
        action = suggest_action(group, score)
        actions.append(
            SuggestedAction(
                recognition_id=recognition_id,
                flag_ids=[f.get("id") for f in group],
                priority=risk_priority(score),
                action=action,
                reasoning=explain_action(group, action),
                risk_score=score,
                flag_types=[f["flag_type"] for f in group],
                severities=[f["severity"] for f in group],
            )
        )

    actions.sort(key=lambda a: (a.priority.rank, a.risk_score), reverse=True)
    return actions[:MAX_SUGGESTED_ACTIONS]


# ===== Trends =====


def build_top_flag_types(flags: list[dict]) -> list[dict]:
    if not flags:
        return []
    counts = Counter(f["flag_type"] for f in flags)
    return [
        {
            "type": flag_type,
            "count": count,
            "percentage": round(count / len(flags) * 100),
        }
        for flag_type, count in counts.most_common(TOP_FLAG_TYPES)
    ]


def build_flags_over_time(flags: list[dict]) -> list[dict]:
    """Flags per day (UTC date of flagged_at), oldest first, with severity breakdown."""
    days: dict[str, Counter] = defaultdict(Counter)
    for f in flags:
        flagged_at = f.get("flagged_at")
        if flagged_at is None:
            continue
        days[flagged_at.date().isoformat()][f["severity"]] += 1

    return [
        {"date": day, "count": sum(counter.values()), "severity": dict(counter)}
        for day, counter in sorted(days.items())
    ]


# ===== Generator =====


class AbuseReportGenerator:
    """Builds moderator reports from the abuse flag store."""

    def __init__(
        self,
        store,
        sink=None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Args:
            store: PostgresAbuseStore (fetch_flags, count_resolved_since)
            sink: AbuseSink for the report audit entry (optional)
            clock: Time source
        """
        self.store = store
        self.sink = sink
        self._clock = clock

    async def generate(
        self,
        date_range: str = "30d",
        flag_types: Optional[list[str]] = None,
        severities: Optional[list[str]] = None,
        summary_only: bool = False,
        requested_by: str = "admin",
    ) -> AbuseReport:
        """
        Generate an abuse report.

        Args:
            date_range: One of DATE_RANGES
            flag_types: Restrict statistics to these flag types
            severities: Restrict statistics to these severities
            summary_only: Statistics only (no actions/trends, no audit entry)
            requested_by: Raw id of the requesting admin (audited hashed)

        Returns:
            AbuseReport
        """
        now = self._clock()
        since = range_start(date_range, now)
        today_start = range_start("today", now)

        flags = await self.store.fetch_flags(
            since=since, flag_types=flag_types, severities=severities
        )
        resolved_today = await self.store.count_resolved_since(today_start)
        report = AbuseReport(
            generated_at=now,
            date_range=date_range,
            statistics=build_statistics(flags, resolved_today),
        )
        if summary_only:
            return report

        # Actions and trends cover every flag type/severity in the range
        all_flags = (
            flags
            if not flag_types and not severities
            else await self.store.fetch_flags(since=since)
        )
        report.suggested_actions = build_suggested_actions(all_flags)
        report.top_flag_types = build_top_flag_types(all_flags)
        report.flags_over_time = build_flags_over_time(all_flags)

        logger.info(
            f"Abuse report ({date_range}): {report.statistics.total_flags} flags, "
            f"{len(report.suggested_actions)} suggested actions"
        )

        if self.sink is not None:
            try:
                await self.sink.audit(
                    ABUSE_REPORT_GENERATED,
                    requested_by,
                    metadata={
                        "dateRange": date_range,
                        "summaryOnly": summary_only,
                        "flagCount": report.statistics.total_flags,
                        "suggestedActionCount": len(report.suggested_actions),
                    },
                )
            except Exception as e:
                logger.error(f"Failed to audit report generation: {e}", exc_info=True)

        return report
