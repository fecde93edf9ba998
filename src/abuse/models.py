# kudosguard - Abuse Detection Models
# AGPL-3.0 License

"""
Data types shared by the detectors, scoring, sink and engine.

Flag metadata is a tagged record per signal (see FlagMetadata subclasses)
so every flag carries the raw numbers that made it fire.
"""

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, Optional


class FlagType(str, Enum):
    """Abuse signal categories."""

    RECIPROCITY = "RECIPROCITY"
    FREQUENCY = "FREQUENCY"
    CONTENT = "CONTENT"
    WEIGHT_MANIPULATION = "WEIGHT_MANIPULATION"
    EVIDENCE = "EVIDENCE"
    MANUAL = "MANUAL"


class Severity(str, Enum):
    """Ordinal severity buckets."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class DetectionMethod(str, Enum):
    AUTOMATIC = "AUTOMATIC"
    MANUAL = "MANUAL"


class FlagStatus(str, Enum):
    """Moderation lifecycle. The engine only creates PENDING flags."""

    PENDING = "PENDING"
    REVIEWED = "REVIEWED"
    RESOLVED = "RESOLVED"
    DISMISSED = "DISMISSED"


class GiverRole(str, Enum):
    USER = "USER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"

    @property
    def expected_weight(self) -> float:
        """Baseline weight a giver of this role normally assigns."""
        return _EXPECTED_WEIGHT[self]


_EXPECTED_WEIGHT = {
    GiverRole.USER: 1.0,
    GiverRole.MANAGER: 1.5,
    GiverRole.ADMIN: 2.0,
}

SYSTEM_ACTOR = "SYSTEM"


@dataclass(frozen=True)
class RecognitionEvent:
    """A recognition being created or updated, evaluated exactly once."""

    recognition_id: str
    giver_id: str
    recipient_id: str
    reason_text: str
    weight: float
    evidence_count: int = 0
    giver_role: GiverRole = GiverRole.USER

    def __post_init__(self):
        if not math.isfinite(self.weight) or self.weight <= 0:
            raise ValueError(f"weight must be a positive finite number, got {self.weight}")
        if self.evidence_count < 0:
            raise ValueError(
                f"evidence_count must be non-negative, got {self.evidence_count}"
            )
        # Accept plain strings from callers ("MANAGER") and normalize
        object.__setattr__(self, "giver_role", GiverRole(self.giver_role))


# ===== Flag metadata variants =====


@dataclass(frozen=True)
class FlagMetadata:
    """Base for typed flag metadata. Subclasses set `kind`."""

    kind: ClassVar[str] = "generic"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["kind"] = self.kind
        return data


@dataclass(frozen=True)
class PairFrequencyMetadata(FlagMetadata):
    kind: ClassVar[str] = "pair_frequency"

    count: int
    threshold: int
    window_days: int


@dataclass(frozen=True)
class MutualExchangeMetadata(FlagMetadata):
    kind: ClassVar[str] = "mutual_exchange"

    direct_count: int
    mutual_count: int
    total_exchanges: int
    threshold: int


@dataclass(frozen=True)
class GiverFrequencyMetadata(FlagMetadata):
    kind: ClassVar[str] = "giver_frequency"

    count: int
    limit: int
    period: str  # 'daily' or 'weekly'


@dataclass(frozen=True)
class ShortReasonMetadata(FlagMetadata):
    kind: ClassVar[str] = "short_reason"

    reason_length: int
    min_length: int


@dataclass(frozen=True)
class DuplicateReasonMetadata(FlagMetadata):
    kind: ClassVar[str] = "duplicate_reason"

    similar_count: int
    threshold: int
    window_days: int
    min_similarity: float


@dataclass(frozen=True)
class EvidencelessWeightMetadata(FlagMetadata):
    kind: ClassVar[str] = "evidenceless_weight"

    weight: float
    evidence_count: int
    giver_role: str
    threshold: float
    high_cutoff: float


@dataclass(frozen=True)
class WeightVarianceMetadata(FlagMetadata):
    kind: ClassVar[str] = "weight_variance"

    actual_weight: float
    expected_weight: float
    variance: float
    threshold: float
    giver_role: str


@dataclass(frozen=True)
class ManualMetadata(FlagMetadata):
    kind: ClassVar[str] = "manual"

    note: str
    moderator_hash: Optional[str] = None


@dataclass
class AbuseFlag:
    """A single abuse signal raised against one recognition."""

    flag_type: FlagType
    severity: Severity
    description: str
    metadata: FlagMetadata
    detection_method: DetectionMethod = DetectionMethod.AUTOMATIC
    flagged_by: str = SYSTEM_ACTOR
    flagged_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: FlagStatus = FlagStatus.PENDING


@dataclass
class DetectionResult:
    """Verdict returned to the recognition-creation workflow."""

    is_abusive: bool
    flags: list[AbuseFlag]
    severity: Severity
    reason_codes: list[str]
    total_score: int = 0
    adjusted_weight: Optional[float] = None

    @classmethod
    def fail_open(cls) -> "DetectionResult":
        """The canonical 'not abusive' result used when detection cannot complete."""
        return cls(
            is_abusive=False,
            flags=[],
            severity=Severity.LOW,
            reason_codes=[],
        )
