# kudosguard - Abuse Detection Engine
# AGPL-3.0 License

"""
Abuse Detection Engine

Entry point for the recognition-creation workflow:

    engine = AbuseDetectionEngine(store, thresholds=AbuseThresholds())
    result = await engine.evaluate(event)
    weight = result.adjusted_weight if result.is_abusive else event.weight

Pipeline:
1. Detectors run concurrently under one overall timeout
2. Flags are merged in detector declaration order
3. Severity is aggregated and the weight adjusted when abusive
4. Flags and an audit entry are written in the background

Detection never raises to the caller. Any detector failure, timeout or
cancellation produces DetectionResult.fail_open().
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Union

from .config import AbuseThresholds
from .detectors import Detector, default_detectors, utcnow
from .errors import DetectionError, MalformedDataError
from .models import AbuseFlag, DetectionResult, RecognitionEvent
from .scoring import adjust_weight, aggregate_severity, reason_codes_for
from .sink import ABUSE_DETECTION_ERROR, ABUSE_FLAGGED, AbuseSink

logger = logging.getLogger("kudosguard.abuse.engine")


@dataclass
class DetectionOutcome:
    """Result of the detection stage: the merged flags, or the error that stopped it."""

    flags: list[AbuseFlag] = field(default_factory=list)
    error: Optional[DetectionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AbuseDetectionEngine:
    """Runs the detectors, scores the flags and records abusive verdicts."""

    def __init__(
        self,
        store,
        thresholds: Optional[AbuseThresholds] = None,
        sink: Optional[AbuseSink] = None,
        detectors: Optional[list[Detector]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the engine.

        Args:
            store: Read queries for detectors (AbuseQueries); also used as the
                   sink's write target when no sink is given
            thresholds: Detection thresholds (defaults if omitted)
            sink: Flag/audit writer
            detectors: Detector list, in the order flags should appear
            clock: Time source for detector windows
        """
        self.store = store
        self.thresholds = thresholds or AbuseThresholds()
        self.sink = sink or AbuseSink(store, self.thresholds.audit_hash_secret)
        self.detectors = (
            detectors
            if detectors is not None
            else default_detectors(self.thresholds, clock)
        )
        self._pending: set[asyncio.Task] = set()

    async def evaluate(self, event: RecognitionEvent) -> DetectionResult:
        """
        Evaluate a recognition for abuse.

        Args:
            event: The recognition being created

        Returns:
            DetectionResult; fail-open result if detection could not complete
        """
        target = self.sink.hash(event.recognition_id)

        try:
            outcome = await self.detect(event)
        except asyncio.CancelledError:
            logger.warning(f"Abuse detection cancelled for {target}, failing open")
            return DetectionResult.fail_open()

        if not outcome.ok:
            logger.error(
                f"Abuse detection failed for {target} in "
                f"{outcome.error.detector}: {outcome.error}",
                exc_info=outcome.error.cause,
            )
            self._schedule(self._record_error(event, outcome.error))
            return DetectionResult.fail_open()

        result = self.score(event, outcome.flags)
        if result.is_abusive:
            logger.info(
                f"Recognition {target} flagged: {len(result.flags)} flags, "
                f"severity={result.severity.value} (score {result.total_score}), "
                f"weight {event.weight} -> {result.adjusted_weight}"
            )
            self._schedule(self._record_verdict(event, result))
        else:
            logger.debug(f"Recognition {target} passed abuse checks")
        return result

    async def detect(self, event: RecognitionEvent) -> DetectionOutcome:
        """Run all detectors concurrently and merge their flags in declaration order."""
        tasks = [
            asyncio.create_task(self._run_detector(detector, event))
            for detector in self.detectors
        ]
        try:
            results = await asyncio.wait_for(
                asyncio.gather(*tasks),
                timeout=self.thresholds.detection_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            return DetectionOutcome(error=DetectionError("pipeline", e))
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        flags: list[AbuseFlag] = []
        for result in results:
            if isinstance(result, DetectionError):
                return DetectionOutcome(error=result)
            flags.extend(result)
        return DetectionOutcome(flags=flags)

    async def _run_detector(
        self, detector: Detector, event: RecognitionEvent
    ) -> Union[list[AbuseFlag], DetectionError]:
        try:
            flags = list(await detector.check(event, self.store))
            for flag in flags:
                if not isinstance(flag, AbuseFlag):
                    raise MalformedDataError(
                        f"{detector.name} returned {type(flag).__name__}, not AbuseFlag"
                    )
            return flags
        except Exception as e:
            return DetectionError(detector.name, e)

    def score(self, event: RecognitionEvent, flags: list[AbuseFlag]) -> DetectionResult:
        """Build the verdict for a merged flag list."""
        severity, total_score = aggregate_severity(flags, self.thresholds)
        is_abusive = len(flags) > 0
        return DetectionResult(
            is_abusive=is_abusive,
            flags=flags,
            severity=severity,
            reason_codes=reason_codes_for(flags),
            total_score=total_score,
            adjusted_weight=(
                adjust_weight(event.weight, flags, self.thresholds)
                if is_abusive
                else None
            ),
        )

    # ===== Background recording =====

    def _schedule(self, coro) -> None:
        """Run a sink write without blocking the caller; keep a reference until done."""
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for outstanding flag/audit writes (shutdown, tests)."""
        while self._pending:
            batch = list(self._pending)
            await asyncio.gather(*batch, return_exceptions=True)
            self._pending.difference_update(batch)

    async def _record_verdict(
        self, event: RecognitionEvent, result: DetectionResult
    ) -> None:
        try:
            await self.sink.persist(
                event.recognition_id,
                result.flags,
                result.severity,
                original_weight=event.weight,
                adjusted_weight=result.adjusted_weight,
            )
        except Exception as e:
            logger.error(
                f"Failed to store abuse flags for "
                f"{self.sink.hash(event.recognition_id)}: {e}",
                exc_info=True,
            )

        try:
            await self.sink.audit(
                ABUSE_FLAGGED,
                event.giver_id,
                event.recognition_id,
                {
                    "flagCount": len(result.flags),
                    "severity": result.severity.value,
                    "severityScore": result.total_score,
                    "originalWeight": event.weight,
                    "adjustedWeight": result.adjusted_weight,
                    "flagTypes": [f.flag_type.value for f in result.flags],
                    "reasonCodes": result.reason_codes,
                },
            )
        except Exception as e:
            logger.error(f"Failed to write abuse audit entry: {e}", exc_info=True)

    async def _record_error(
        self, event: RecognitionEvent, error: DetectionError
    ) -> None:
        try:
            await self.sink.audit(
                ABUSE_DETECTION_ERROR,
                event.giver_id,
                event.recognition_id,
                {
                    "detector": error.detector,
                    "error": str(error.cause) if error.cause else str(error),
                    "giverId": self.sink.hash(event.giver_id),
                    "recipientId": self.sink.hash(event.recipient_id),
                },
            )
        except Exception as e:
            logger.error(f"Failed to write detection error audit entry: {e}", exc_info=True)
