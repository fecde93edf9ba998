# kudosguard - Abuse Flag Persistence and Audit
# AGPL-3.0 License

"""
Persistence/audit sink for abuse verdicts.

persist() writes the flags raised for a recognition; audit() writes one
audit entry with actor and target hashed. Raw identifiers never reach
the audit table.
"""

import logging
from typing import Optional

from .models import (
    AbuseFlag,
    DetectionMethod,
    FlagType,
    ManualMetadata,
    Severity,
)
from .privacy import hash_identifier

logger = logging.getLogger("kudosguard.abuse.sink")

ABUSE_FLAGGED = "ABUSE_FLAGGED"
ABUSE_DETECTION_ERROR = "ABUSE_DETECTION_ERROR"
ABUSE_MANUAL_FLAG = "ABUSE_MANUAL_FLAG"
ABUSE_REPORT_GENERATED = "ABUSE_REPORT_GENERATED"


class AbuseSink:
    """Writes abuse flags and privacy-preserving audit entries."""

    def __init__(self, store, hash_secret: Optional[str] = None):
        """
        Initialize the sink.

        Args:
            store: Object with insert_flags() and insert_audit_entry()
                   (PostgresAbuseStore in production)
            hash_secret: Optional HMAC key for identifier hashing
        """
        self.store = store
        self.hash_secret = hash_secret

    def hash(self, value: str) -> str:
        return hash_identifier(value, self.hash_secret)

    async def persist(
        self,
        recognition_id: str,
        flags: list[AbuseFlag],
        severity: Severity,
        original_weight: Optional[float] = None,
        adjusted_weight: Optional[float] = None,
    ) -> None:
        """Write one record per flag, as raised (PENDING for engine flags)."""
        if not flags:
            return
        await self.store.insert_flags(
            recognition_id,
            flags,
            original_weight=original_weight,
            adjusted_weight=adjusted_weight,
        )
        logger.info(
            f"Stored {len(flags)} abuse flags ({severity.value}) "
            f"for recognition {self.hash(recognition_id)}"
        )

    async def audit(
        self,
        event_code: str,
        actor_id: str,
        target_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        """Write an audit entry; actor_id and target_id are hashed here."""
        await self.store.insert_audit_entry(
            event_code,
            self.hash(actor_id),
            self.hash(target_id) if target_id else None,
            metadata,
        )

    async def record_manual_flag(
        self,
        recognition_id: str,
        moderator_id: str,
        note: str,
        severity: Severity = Severity.MEDIUM,
        flag_type: FlagType = FlagType.MANUAL,
    ) -> AbuseFlag:
        """
        Store a moderator-raised flag and audit it.

        Args:
            recognition_id: Recognition being flagged
            moderator_id: Raw moderator id (stored hashed only)
            note: Moderator's explanation
            severity: Severity chosen by the moderator
            flag_type: MANUAL by default; EVIDENCE for evidence/weight mismatch

        Returns:
            The stored flag
        """
        moderator_hash = self.hash(moderator_id)
        flag = AbuseFlag(
            flag_type=flag_type,
            severity=severity,
            description=f"Manually flagged for review: {note}",
            metadata=ManualMetadata(note=note, moderator_hash=moderator_hash),
            detection_method=DetectionMethod.MANUAL,
            flagged_by=moderator_hash,
        )
        await self.persist(recognition_id, [flag], severity)
        await self.audit(
            ABUSE_MANUAL_FLAG,
            moderator_id,
            recognition_id,
            {"flagType": flag_type.value, "severity": severity.value},
        )
        return flag
