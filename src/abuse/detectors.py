# kudosguard - Abuse Signal Detectors
# AGPL-3.0 License

"""
Abuse Signal Detectors

Each detector looks at one family of gaming patterns:
- Reciprocity: repeated or mutual recognition between the same pair
- Frequency: a giver issuing too many recognitions
- Content: very short or copy-pasted reasons
- Weight manipulation: inflated weight without evidence or role backing

Detectors only read from the store and return flags. They never catch
store errors; the engine turns those into a fail-open verdict.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .config import AbuseThresholds
from .models import (
    AbuseFlag,
    DuplicateReasonMetadata,
    EvidencelessWeightMetadata,
    FlagType,
    GiverFrequencyMetadata,
    MutualExchangeMetadata,
    PairFrequencyMetadata,
    RecognitionEvent,
    Severity,
    ShortReasonMetadata,
    WeightVarianceMetadata,
)
from .privacy import hash_identifier
from .store import AbuseQueries

logger = logging.getLogger("kudosguard.abuse.detectors")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Detector:
    """Base class: one signal family, one check() call per recognition."""

    name = "detector"

    def __init__(
        self,
        thresholds: Optional[AbuseThresholds] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.thresholds = thresholds or AbuseThresholds()
        self._clock = clock

    async def check(
        self, event: RecognitionEvent, store: AbuseQueries
    ) -> list[AbuseFlag]:
        raise NotImplementedError

    def _fired(self, event: RecognitionEvent, flag: AbuseFlag) -> AbuseFlag:
        logger.debug(
            f"{self.name} fired on {hash_identifier(event.recognition_id)}: "
            f"{flag.severity.value} - {flag.description}"
        )
        return flag


class ReciprocityDetector(Detector):
    """Detects 'I'll praise you, you praise me' between one giver/recipient pair."""

    name = "reciprocity"

    async def check(
        self, event: RecognitionEvent, store: AbuseQueries
    ) -> list[AbuseFlag]:
        t = self.thresholds
        since = self._clock() - timedelta(days=t.reciprocity_window_days)

        reciprocity_count = await store.count_between(
            event.giver_id, event.recipient_id, since
        )
        mutual_count = await store.count_between(
            event.recipient_id, event.giver_id, since
        )

        flags = []
        if reciprocity_count >= t.reciprocity_threshold:
            severity = (
                Severity.HIGH
                if reciprocity_count >= t.reciprocity_threshold * 2
                else Severity.MEDIUM
            )
            flags.append(
                self._fired(
                    event,
                    AbuseFlag(
                        flag_type=FlagType.RECIPROCITY,
                        severity=severity,
                        description=(
                            f"{reciprocity_count} recognitions from "
                            f"{hash_identifier(event.giver_id)} to "
                            f"{hash_identifier(event.recipient_id)} in "
                            f"{t.reciprocity_window_days} days "
                            f"(threshold: {t.reciprocity_threshold})"
                        ),
                        metadata=PairFrequencyMetadata(
                            count=reciprocity_count,
                            threshold=t.reciprocity_threshold,
                            window_days=t.reciprocity_window_days,
                        ),
                    ),
                )
            )

        # Bidirectional exchange can co-exist with the one-directional flag
        if (
            mutual_count >= t.mutual_exchange_threshold
            and reciprocity_count >= t.mutual_exchange_threshold
        ):
            flags.append(
                self._fired(
                    event,
                    AbuseFlag(
                        flag_type=FlagType.RECIPROCITY,
                        severity=Severity.HIGH,
                        description=(
                            f"Mutual recognition exchange detected: "
                            f"{reciprocity_count} direct, {mutual_count} reverse "
                            f"in {t.reciprocity_window_days} days"
                        ),
                        metadata=MutualExchangeMetadata(
                            direct_count=reciprocity_count,
                            mutual_count=mutual_count,
                            total_exchanges=reciprocity_count + mutual_count,
                            threshold=t.mutual_exchange_threshold,
                        ),
                    ),
                )
            )

        return flags


class FrequencyDetector(Detector):
    """Caps how often a single giver can issue recognitions."""

    name = "frequency"

    async def check(
        self, event: RecognitionEvent, store: AbuseQueries
    ) -> list[AbuseFlag]:
        t = self.thresholds
        now = self._clock()
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        week_ago = now - timedelta(days=7)

        daily_count = await store.count_given(event.giver_id, today_start)
        weekly_count = await store.count_given(event.giver_id, week_ago)

        flags = []
        if daily_count >= t.daily_limit:
            severity = (
                Severity.HIGH
                if daily_count >= t.daily_limit * t.daily_high_multiplier
                else Severity.MEDIUM
            )
            flags.append(
                self._fired(
                    event,
                    AbuseFlag(
                        flag_type=FlagType.FREQUENCY,
                        severity=severity,
                        description=(
                            f"Daily recognition limit exceeded: "
                            f"{daily_count}/{t.daily_limit}"
                        ),
                        metadata=GiverFrequencyMetadata(
                            count=daily_count, limit=t.daily_limit, period="daily"
                        ),
                    ),
                )
            )

        # Sustained volume over a week is treated as worse than a daily burst
        if weekly_count >= t.weekly_limit:
            flags.append(
                self._fired(
                    event,
                    AbuseFlag(
                        flag_type=FlagType.FREQUENCY,
                        severity=Severity.CRITICAL,
                        description=(
                            f"Weekly recognition limit exceeded: "
                            f"{weekly_count}/{t.weekly_limit}"
                        ),
                        metadata=GiverFrequencyMetadata(
                            count=weekly_count, limit=t.weekly_limit, period="weekly"
                        ),
                    ),
                )
            )

        return flags


class ContentDetector(Detector):
    """Catches low-effort or copy-pasted recognition reasons."""

    name = "content"

    async def check(
        self, event: RecognitionEvent, store: AbuseQueries
    ) -> list[AbuseFlag]:
        t = self.thresholds
        reason = event.reason_text or ""
        flags = []

        if len(reason) < t.min_reason_length:
            flags.append(
                self._fired(
                    event,
                    AbuseFlag(
                        flag_type=FlagType.CONTENT,
                        severity=Severity.LOW,
                        description=(
                            f"Recognition reason too short: {len(reason)} characters "
                            f"(minimum: {t.min_reason_length})"
                        ),
                        metadata=ShortReasonMetadata(
                            reason_length=len(reason), min_length=t.min_reason_length
                        ),
                    ),
                )
            )

        since = self._clock() - timedelta(days=t.duplicate_window_days)
        similar_count = await store.count_similar_reasons(
            event.giver_id, reason, since, t.duplicate_similarity
        )
        if similar_count >= t.max_duplicate_reason:
            flags.append(
                self._fired(
                    event,
                    AbuseFlag(
                        flag_type=FlagType.CONTENT,
                        severity=Severity.MEDIUM,
                        description=(
                            f"Duplicate/similar content detected: {similar_count} "
                            f"similar reasons in last {t.duplicate_window_days} days"
                        ),
                        metadata=DuplicateReasonMetadata(
                            similar_count=similar_count,
                            threshold=t.max_duplicate_reason,
                            window_days=t.duplicate_window_days,
                            min_similarity=t.duplicate_similarity,
                        ),
                    ),
                )
            )

        return flags


class WeightManipulationDetector(Detector):
    """Catches inflated weight not backed by evidence or the giver's role."""

    name = "weight_manipulation"

    async def check(
        self, event: RecognitionEvent, store: AbuseQueries
    ) -> list[AbuseFlag]:
        t = self.thresholds
        weight = event.weight
        role = event.giver_role
        flags = []

        if (
            weight > t.evidenceless_high_weight_threshold
            and event.evidence_count == 0
        ):
            severity = (
                Severity.HIGH
                if weight >= t.evidenceless_high_weight_cutoff
                else Severity.MEDIUM
            )
            flags.append(
                self._fired(
                    event,
                    AbuseFlag(
                        flag_type=FlagType.WEIGHT_MANIPULATION,
                        severity=severity,
                        description=(
                            f"High weight ({weight}) without evidence "
                            f"(role: {role.value})"
                        ),
                        metadata=EvidencelessWeightMetadata(
                            weight=weight,
                            evidence_count=event.evidence_count,
                            giver_role=role.value,
                            threshold=t.evidenceless_high_weight_threshold,
                            high_cutoff=t.evidenceless_high_weight_cutoff,
                        ),
                    ),
                )
            )

        # Attached evidence justifies above-baseline weight
        expected = role.expected_weight
        variance = abs(weight - expected)
        if (
            variance > t.weight_variance_threshold
            and weight > expected
            and event.evidence_count == 0
        ):
            flags.append(
                self._fired(
                    event,
                    AbuseFlag(
                        flag_type=FlagType.WEIGHT_MANIPULATION,
                        severity=Severity.MEDIUM,
                        description=(
                            f"Unusual weight pattern: {weight} vs expected "
                            f"{expected} for {role.value}"
                        ),
                        metadata=WeightVarianceMetadata(
                            actual_weight=weight,
                            expected_weight=expected,
                            variance=round(variance, 4),
                            threshold=t.weight_variance_threshold,
                            giver_role=role.value,
                        ),
                    ),
                )
            )

        return flags


def default_detectors(
    thresholds: Optional[AbuseThresholds] = None,
    clock: Callable[[], datetime] = utcnow,
) -> list[Detector]:
    """The four detectors in declaration order (order of flags in results)."""
    return [
        ReciprocityDetector(thresholds, clock),
        FrequencyDetector(thresholds, clock),
        ContentDetector(thresholds, clock),
        WeightManipulationDetector(thresholds, clock),
    ]
