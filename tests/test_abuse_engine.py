# kudosguard - Recognition Abuse Detection
# AGPL-3.0 License

"""Tests for the abuse detection engine (orchestration, fail-open, recording)."""

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from abuse.config import AbuseThresholds
from abuse.detectors import Detector
from abuse.engine import AbuseDetectionEngine
from abuse.errors import MalformedDataError, QueryError, SinkError
from abuse.models import (
    AbuseFlag,
    DetectionResult,
    FlagType,
    ManualMetadata,
    RecognitionEvent,
    Severity,
)
from abuse.privacy import hash_identifier
from abuse.sink import ABUSE_DETECTION_ERROR, ABUSE_FLAGGED, AbuseSink
from abuse.store import AbuseQueries, PostgresAbuseStore, reason_similarity

NOW = datetime(2026, 3, 10, 15, 30, tzinfo=timezone.utc)
GOOD_REASON = "Great work on the project, really appreciated the effort!"


def clock():
    return NOW


def make_event(**overrides) -> RecognitionEvent:
    fields = dict(
        recognition_id="rec123",
        giver_id="giver123",
        recipient_id="recipient123",
        reason_text=GOOD_REASON,
        weight=1.5,
        evidence_count=1,
        giver_role="USER",
    )
    fields.update(overrides)
    return RecognitionEvent(**fields)


def make_store(reciprocity=2, mutual=1, daily=2, weekly=10, duplicates=0):
    """Mock store: read counts for detectors, AsyncMock writes for the sink."""
    store = MagicMock()

    async def count_between(giver_id, recipient_id, since):
        return reciprocity if giver_id == "giver123" else mutual

    async def count_given(giver_id, since):
        return daily if since >= NOW.replace(hour=0, minute=0) else weekly

    store.count_between = AsyncMock(side_effect=count_between)
    store.count_given = AsyncMock(side_effect=count_given)
    store.count_similar_reasons = AsyncMock(return_value=duplicates)
    store.insert_flags = AsyncMock()
    store.insert_audit_entry = AsyncMock()
    return store


def make_engine(store, **threshold_overrides) -> AbuseDetectionEngine:
    return AbuseDetectionEngine(
        store, thresholds=AbuseThresholds(**threshold_overrides), clock=clock
    )


class InMemoryStore(AbuseQueries):
    """Recognition history held in a list; records every write."""

    def __init__(self, history=None):
        # (giver_id, recipient_id, reason, created_at)
        self.history = list(history or [])
        self.flag_writes = []
        self.audit_entries = []

    async def count_between(self, giver_id, recipient_id, since):
        return sum(
            1 for g, r, _, at in self.history
            if g == giver_id and r == recipient_id and at >= since
        )

    async def count_given(self, giver_id, since):
        return sum(1 for g, _, _, at in self.history if g == giver_id and at >= since)

    async def count_similar_reasons(self, giver_id, reason, since, min_similarity):
        return sum(
            1 for g, _, text, at in self.history
            if g == giver_id and at >= since and reason_similarity(reason, text) > min_similarity
        )

    async def insert_flags(self, recognition_id, flags, original_weight=None, adjusted_weight=None):
        self.flag_writes.append((recognition_id, list(flags), original_weight, adjusted_weight))

    async def insert_audit_entry(self, event_code, actor_hash, target_hash=None, metadata=None):
        self.audit_entries.append((event_code, actor_hash, target_hash, metadata))


class SlowDetector(Detector):
    name = "slow"

    async def check(self, event, store):
        await asyncio.sleep(10)
        return []


class TestScenarios:
    """End-to-end verdicts for representative recognitions."""

    @pytest.mark.asyncio
    async def test_scenario_a_clean_recognition(self):
        store = make_store()
        engine = make_engine(store)

        result = await engine.evaluate(make_event())
        await engine.drain()

        assert result.is_abusive is False
        assert result.flags == []
        assert result.severity == Severity.LOW
        assert result.adjusted_weight is None
        assert result.reason_codes == []
        store.insert_flags.assert_not_called()
        store.insert_audit_entry.assert_not_called()

    @pytest.mark.asyncio
    async def test_scenario_b_reciprocity_with_mutual_exchange(self):
        engine = make_engine(make_store(reciprocity=6, mutual=3))

        result = await engine.evaluate(make_event())

        assert result.is_abusive is True
        assert [f.flag_type for f in result.flags] == [FlagType.RECIPROCITY] * 2
        assert [f.severity for f in result.flags] == [Severity.MEDIUM, Severity.HIGH]
        assert result.severity == Severity.HIGH
        assert result.total_score == 15
        assert result.adjusted_weight < 1.5
        assert result.adjusted_weight == round(1.5 * 0.7 * 0.7, 2)
        await engine.drain()

    @pytest.mark.asyncio
    async def test_scenario_c_evidenceless_high_weight(self):
        engine = make_engine(make_store())

        result = await engine.evaluate(make_event(weight=3.5, evidence_count=0))

        weight_flags = [f for f in result.flags if f.flag_type == FlagType.WEIGHT_MANIPULATION]
        assert weight_flags[0].severity == Severity.HIGH
        assert weight_flags[0].metadata.kind == "evidenceless_weight"
        # USER baseline is 1.0, so the role variance check also fires
        assert weight_flags[1].metadata.kind == "weight_variance"
        assert len(result.flags) == 2
        assert result.adjusted_weight == 0.32  # 3.5 * 0.3 * 0.3
        await engine.drain()

    @pytest.mark.asyncio
    async def test_scenario_d_short_reason(self):
        engine = make_engine(make_store())

        result = await engine.evaluate(make_event(reason_text="Good job", weight=1.5))

        assert len(result.flags) == 1
        assert result.flags[0].flag_type == FlagType.CONTENT
        assert result.flags[0].severity == Severity.LOW
        assert result.severity == Severity.LOW
        assert result.adjusted_weight == round(1.5 * 0.9, 2)
        assert result.reason_codes == ["Similar or duplicate recognition content"]
        await engine.drain()

    @pytest.mark.asyncio
    async def test_scenario_e_weekly_limit(self):
        engine = make_engine(make_store(weekly=51))

        result = await engine.evaluate(make_event())

        assert len(result.flags) == 1
        assert result.flags[0].flag_type == FlagType.FREQUENCY
        assert result.flags[0].severity == Severity.CRITICAL
        assert result.severity == Severity.CRITICAL
        assert result.total_score == 20
        await engine.drain()

    @pytest.mark.asyncio
    async def test_scenario_f_multiple_signals(self):
        engine = make_engine(make_store(reciprocity=6, mutual=4, daily=12))

        result = await engine.evaluate(
            make_event(reason_text="Excellent", weight=3.0, evidence_count=0)
        )

        types = [f.flag_type for f in result.flags]
        assert len(result.flags) >= 4
        assert {
            FlagType.RECIPROCITY,
            FlagType.FREQUENCY,
            FlagType.CONTENT,
            FlagType.WEIGHT_MANIPULATION,
        } <= set(types)
        # Flags follow detector declaration order
        assert types == sorted(types, key=[
            FlagType.RECIPROCITY,
            FlagType.FREQUENCY,
            FlagType.CONTENT,
            FlagType.WEIGHT_MANIPULATION,
        ].index)
        assert result.total_score >= 20
        assert result.severity == Severity.CRITICAL
        assert result.adjusted_weight < 1.0
        assert result.adjusted_weight >= 0.1
        assert len(result.reason_codes) == len(result.flags)
        await engine.drain()


class TestFailOpen:
    """Detection failures never reach the caller."""

    @pytest.mark.asyncio
    async def test_query_error_fails_open(self):
        store = make_store(reciprocity=20, weekly=80)
        store.count_between = AsyncMock(side_effect=QueryError("connection refused"))
        engine = make_engine(store)

        result = await engine.evaluate(make_event())
        await engine.drain()

        assert result == DetectionResult.fail_open()
        store.insert_flags.assert_not_called()

    @pytest.mark.asyncio
    async def test_unexpected_exception_fails_open(self):
        store = make_store()
        store.count_similar_reasons = AsyncMock(side_effect=RuntimeError("boom"))
        engine = make_engine(store)

        result = await engine.evaluate(make_event(reason_text="short"))
        await engine.drain()

        assert result.is_abusive is False
        assert result.flags == []
        assert result.severity == Severity.LOW

    @pytest.mark.asyncio
    async def test_error_is_audited_with_hashed_ids(self):
        store = make_store()
        store.count_given = AsyncMock(side_effect=QueryError("timeout"))
        engine = make_engine(store)

        await engine.evaluate(make_event())
        await engine.drain()

        store.insert_audit_entry.assert_awaited_once()
        event_code, actor, target, metadata = store.insert_audit_entry.await_args.args
        assert event_code == ABUSE_DETECTION_ERROR
        assert actor == hash_identifier("giver123")
        assert target == hash_identifier("rec123")
        assert metadata["detector"] == "frequency"
        assert metadata["giverId"] == hash_identifier("giver123")
        assert "giver123" not in str(metadata)

    @pytest.mark.asyncio
    async def test_malformed_history_fails_open(self):
        pool = MagicMock()
        pool.fetchval = AsyncMock(return_value=0)
        pool.fetch = AsyncMock(return_value=[{"id": 7, "reason": None}])
        pool.execute = AsyncMock()
        engine = make_engine(PostgresAbuseStore(pool))

        outcome = await engine.detect(make_event())
        assert isinstance(outcome.error.cause, MalformedDataError)
        assert outcome.error.detector == "content"

        result = await engine.evaluate(make_event())
        await engine.drain()
        assert result == DetectionResult.fail_open()

    @pytest.mark.asyncio
    async def test_timeout_fails_open(self):
        store = make_store()
        engine = AbuseDetectionEngine(
            store,
            thresholds=AbuseThresholds(detection_timeout_seconds=0.05),
            detectors=[SlowDetector()],
        )

        outcome = await engine.detect(make_event())
        assert outcome.ok is False
        assert outcome.error.detector == "pipeline"

        result = await engine.evaluate(make_event())
        await engine.drain()
        assert result == DetectionResult.fail_open()

    @pytest.mark.asyncio
    async def test_cancellation_returns_fail_open(self):
        store = make_store()
        engine = AbuseDetectionEngine(store, detectors=[SlowDetector()])

        task = asyncio.create_task(engine.evaluate(make_event()))
        await asyncio.sleep(0.01)
        task.cancel()
        result = await task

        assert result == DetectionResult.fail_open()

    @pytest.mark.asyncio
    async def test_detector_returning_none_fails_open(self):
        class NoFlagsDetector(Detector):
            name = "no_flags"

            async def check(self, event, store):
                return None

        store = make_store()
        engine = AbuseDetectionEngine(store, detectors=[NoFlagsDetector()])

        outcome = await engine.detect(make_event())
        assert outcome.error.detector == "no_flags"
        assert isinstance(outcome.error.cause, TypeError)

        result = await engine.evaluate(make_event())
        await engine.drain()
        assert result == DetectionResult.fail_open()
        assert store.insert_audit_entry.await_args.args[0] == ABUSE_DETECTION_ERROR

    @pytest.mark.asyncio
    async def test_detector_returning_non_flags_fails_open(self):
        class StringsDetector(Detector):
            name = "strings"

            async def check(self, event, store):
                return ["not a flag"]

        engine = AbuseDetectionEngine(make_store(), detectors=[StringsDetector()])

        outcome = await engine.detect(make_event())
        assert isinstance(outcome.error.cause, MalformedDataError)

        result = await engine.evaluate(make_event())
        await engine.drain()
        assert result == DetectionResult.fail_open()


class TestRecording:
    """Flags and audit entries are written in the background."""

    @pytest.mark.asyncio
    async def test_abusive_verdict_is_persisted_and_audited(self):
        store = make_store(weekly=51)
        engine = make_engine(store)

        result = await engine.evaluate(make_event())
        await engine.drain()

        store.insert_flags.assert_awaited_once()
        args, kwargs = store.insert_flags.await_args
        assert args[0] == "rec123"
        assert args[1] == result.flags
        assert kwargs == {"original_weight": 1.5, "adjusted_weight": result.adjusted_weight}
        assert all(f.status.value == "PENDING" for f in args[1])
        assert all(f.flagged_by == "SYSTEM" for f in args[1])

        event_code, actor, target, metadata = store.insert_audit_entry.await_args.args
        assert event_code == ABUSE_FLAGGED
        assert actor == hash_identifier("giver123")
        assert target == hash_identifier("rec123")
        assert metadata["flagCount"] == 1
        assert metadata["severity"] == "CRITICAL"
        assert metadata["originalWeight"] == 1.5
        assert metadata["adjustedWeight"] == result.adjusted_weight
        assert metadata["flagTypes"] == ["FREQUENCY"]

    @pytest.mark.asyncio
    async def test_audit_uses_configured_secret(self):
        store = make_store(weekly=51)
        engine = make_engine(store, audit_hash_secret="pepper")

        await engine.evaluate(make_event())
        await engine.drain()

        actor = store.insert_audit_entry.await_args.args[1]
        assert actor == hash_identifier("giver123", secret="pepper")

    @pytest.mark.asyncio
    async def test_sink_failure_keeps_verdict(self):
        store = make_store(reciprocity=6, mutual=3)
        store.insert_flags = AsyncMock(side_effect=SinkError("disk full"))
        engine = make_engine(store)

        result = await engine.evaluate(make_event())
        await engine.drain()

        assert result.is_abusive is True
        assert result.severity == Severity.HIGH
        # The audit entry is still attempted after a failed flag write
        store.insert_audit_entry.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_audit_failure_is_swallowed(self):
        store = make_store(weekly=51)
        store.insert_audit_entry = AsyncMock(side_effect=SinkError("audit down"))
        engine = make_engine(store)

        result = await engine.evaluate(make_event())
        await engine.drain()

        assert result.is_abusive is True
        store.insert_flags.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_result_returned_before_writes_complete(self):
        store = make_store(weekly=51)
        release = asyncio.Event()

        async def slow_insert(*args, **kwargs):
            await release.wait()

        store.insert_flags = AsyncMock(side_effect=slow_insert)
        engine = make_engine(store)

        result = await engine.evaluate(make_event())
        assert result.is_abusive is True
        assert len(engine._pending) == 1

        release.set()
        await engine.drain()
        assert len(engine._pending) == 0

    @pytest.mark.asyncio
    async def test_custom_sink(self):
        store = make_store(weekly=51)
        writer = MagicMock()
        writer.insert_flags = AsyncMock()
        writer.insert_audit_entry = AsyncMock()
        engine = AbuseDetectionEngine(store, sink=AbuseSink(writer), clock=clock)

        await engine.evaluate(make_event())
        await engine.drain()

        writer.insert_flags.assert_awaited_once()
        store.insert_flags.assert_not_called()


class TestInMemoryHistory:
    """Windows and thresholds evaluated against concrete history."""

    @pytest.mark.asyncio
    async def test_old_history_is_outside_windows(self):
        old = NOW - timedelta(days=40)
        history = [("giver123", "recipient123", GOOD_REASON, old)] * 30
        store = InMemoryStore(history)
        engine = make_engine(store)

        result = await engine.evaluate(make_event())
        await engine.drain()

        assert result.is_abusive is False
        assert store.flag_writes == []

    @pytest.mark.asyncio
    async def test_recent_copy_paste_and_reciprocity(self):
        recent = NOW - timedelta(days=2)
        history = (
            [("giver123", "recipient123", GOOD_REASON, recent)] * 5
            + [("recipient123", "giver123", "Thanks for the code review", recent)] * 3
        )
        store = InMemoryStore(history)
        engine = make_engine(store)

        result = await engine.evaluate(make_event(weight=1.0))
        await engine.drain()

        kinds = [f.metadata.kind for f in result.flags]
        assert kinds == ["pair_frequency", "mutual_exchange", "duplicate_reason"]
        assert result.severity == Severity.CRITICAL  # 5 + 10 + 5
        assert result.adjusted_weight == round(1.0 * 0.7 * 0.7 * 0.9, 2)

        (recognition_id, flags, original, adjusted), = store.flag_writes
        assert recognition_id == "rec123"
        assert flags == result.flags
        assert (original, adjusted) == (1.0, result.adjusted_weight)
        assert [entry[0] for entry in store.audit_entries] == [ABUSE_FLAGGED]

    @pytest.mark.asyncio
    async def test_daily_window_starts_at_midnight(self):
        before_midnight = NOW.replace(hour=0, minute=0) - timedelta(minutes=1)
        history = [("giver123", f"r{i}", f"Reason number {i} " * 3, before_midnight) for i in range(10)]
        store = InMemoryStore(history)
        engine = make_engine(store)

        result = await engine.evaluate(make_event())
        await engine.drain()

        assert result.is_abusive is False


class TestDetectionOrder:
    @pytest.mark.asyncio
    async def test_flags_follow_declaration_not_completion_order(self):
        class Late(Detector):
            name = "late"

            async def check(self, event, store):
                await asyncio.sleep(0.02)
                return [_flag(FlagType.RECIPROCITY)]

        class Early(Detector):
            name = "early"

            async def check(self, event, store):
                return [_flag(FlagType.CONTENT)]

        engine = AbuseDetectionEngine(make_store(), detectors=[Late(), Early()])
        outcome = await engine.detect(make_event())

        assert [f.flag_type for f in outcome.flags] == [FlagType.RECIPROCITY, FlagType.CONTENT]


def _flag(flag_type):
    return AbuseFlag(
        flag_type=flag_type,
        severity=Severity.LOW,
        description="test",
        metadata=ManualMetadata(note="test"),
    )


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
