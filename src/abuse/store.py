# kudosguard - Abuse Detection Datastore
# AGPL-3.0 License

"""
Database operations for abuse detection.

Read side: the aggregate counts detectors need (pair counts, giver counts,
near-duplicate reasons). Write side: abuse flags and audit entries.

Tables: recognitions, abuse_flags, audit_entries
(see migrations/001_abuse_detection.sql).

Read and write failures raise QueryError / SinkError; callers decide
how to degrade.
"""

import json
import logging
from datetime import datetime
from typing import Optional

import asyncpg
from rapidfuzz.distance import Levenshtein

from .errors import MalformedDataError, QueryError, SinkError
from .models import AbuseFlag

logger = logging.getLogger(__name__)

# Upper bound on historical reasons compared for near-duplicates
DUPLICATE_SCAN_LIMIT = 500


def reason_similarity(first: str, second: str) -> float:
    """
    Case-insensitive similarity of two reasons in [0, 1].

    1 - levenshtein(a, b) / max(len(a), len(b)); two empty strings are identical.
    """
    return Levenshtein.normalized_similarity(first.lower(), second.lower())


class AbuseQueries:
    """Read contract the detectors depend on."""

    async def count_between(
        self, giver_id: str, recipient_id: str, since: datetime
    ) -> int:
        """Recognitions from giver_id to recipient_id created at or after `since`."""
        raise NotImplementedError

    async def count_given(self, giver_id: str, since: datetime) -> int:
        """Recognitions issued by giver_id at or after `since`."""
        raise NotImplementedError

    async def count_similar_reasons(
        self,
        giver_id: str,
        reason: str,
        since: datetime,
        min_similarity: float,
    ) -> int:
        """Giver's recent reasons whose similarity to `reason` exceeds min_similarity."""
        raise NotImplementedError


class PostgresAbuseStore(AbuseQueries):
    """AsyncPG-backed abuse datastore."""

    def __init__(self, db_pool: asyncpg.Pool):
        """
        Initialize the abuse store.

        Args:
            db_pool: AsyncPG connection pool
        """
        self.db = db_pool

    # ===== Detector queries =====

    async def count_between(
        self, giver_id: str, recipient_id: str, since: datetime
    ) -> int:
        try:
            count = await self.db.fetchval(
                """
                SELECT COUNT(*) FROM recognitions
                WHERE giver_id = $1 AND recipient_id = $2 AND created_at >= $3
                """,
                giver_id,
                recipient_id,
                since,
            )
        except (asyncpg.PostgresError, OSError) as e:
            raise QueryError(f"pair count query failed: {e}") from e
        return int(count or 0)

    async def count_given(self, giver_id: str, since: datetime) -> int:
        try:
            count = await self.db.fetchval(
                """
                SELECT COUNT(*) FROM recognitions
                WHERE giver_id = $1 AND created_at >= $2
                """,
                giver_id,
                since,
            )
        except (asyncpg.PostgresError, OSError) as e:
            raise QueryError(f"giver count query failed: {e}") from e
        return int(count or 0)

    async def count_similar_reasons(
        self,
        giver_id: str,
        reason: str,
        since: datetime,
        min_similarity: float,
    ) -> int:
        try:
            rows = await self.db.fetch(
                """
                SELECT id, reason FROM recognitions
                WHERE giver_id = $1 AND created_at >= $2
                ORDER BY created_at DESC
                LIMIT $3
                """,
                giver_id,
                since,
                DUPLICATE_SCAN_LIMIT,
            )
        except (asyncpg.PostgresError, OSError) as e:
            raise QueryError(f"recent reasons query failed: {e}") from e

        similar = 0
        for row in rows:
            previous = row["reason"]
            if not isinstance(previous, str):
                raise MalformedDataError(
                    f"recognition {row['id']} has no reason text"
                )
            if reason_similarity(reason, previous) > min_similarity:
                similar += 1
        return similar

    # ===== Sink writes =====

    async def insert_flags(
        self,
        recognition_id: str,
        flags: list[AbuseFlag],
        original_weight: Optional[float] = None,
        adjusted_weight: Optional[float] = None,
    ) -> None:
        """
        Write one abuse_flags row per flag.

        Args:
            recognition_id: Recognition the flags belong to
            flags: Flags to store (status/flagged_by/flagged_at taken from each flag)
            original_weight: Weight requested by the giver, if known
            adjusted_weight: Weight after penalties, if one was applied
        """
        try:
            await self.db.executemany(
                """
                INSERT INTO abuse_flags (
                    recognition_id, flag_type, severity, description,
                    detection_method, flagged_by, flagged_at, status, metadata,
                    original_weight, adjusted_weight
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9::jsonb, $10, $11)
                """,
                [
                    (
                        recognition_id,
                        flag.flag_type.value,
                        flag.severity.value,
                        flag.description,
                        flag.detection_method.value,
                        flag.flagged_by,
                        flag.flagged_at,
                        flag.status.value,
                        json.dumps(flag.metadata.to_dict()),
                        original_weight,
                        adjusted_weight,
                    )
                    for flag in flags
                ],
            )
        except (asyncpg.PostgresError, OSError) as e:
            raise SinkError(f"failed to store abuse flags: {e}") from e

    async def insert_audit_entry(
        self,
        event_code: str,
        actor_hash: str,
        target_hash: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        """Write an audit entry. Identifiers must already be hashed."""
        try:
            await self.db.execute(
                """
                INSERT INTO audit_entries (event_code, actor_id, target_id, metadata, created_at)
                VALUES ($1, $2, $3, $4::jsonb, NOW())
                """,
                event_code,
                actor_hash,
                target_hash,
                json.dumps(metadata) if metadata is not None else None,
            )
        except (asyncpg.PostgresError, OSError) as e:
            raise SinkError(f"failed to store audit entry: {e}") from e

    # ===== Moderation reads =====

    async def fetch_flags(
        self,
        since: Optional[datetime] = None,
        flag_types: Optional[list[str]] = None,
        severities: Optional[list[str]] = None,
        status: Optional[str] = None,
        limit: int = 5000,
    ) -> list[dict]:
        """
        Fetch abuse flag records for reporting.

        Args:
            since: Only flags raised at or after this time (None for all)
            flag_types: Restrict to these flag types
            severities: Restrict to these severities
            status: Restrict to one moderation status
            limit: Maximum rows returned, newest first

        Returns:
            List of flag records with metadata decoded to dicts
        """
        clauses = []
        params: list = []
        if since is not None:
            params.append(since)
            clauses.append(f"flagged_at >= ${len(params)}")
        if flag_types:
            params.append(flag_types)
            clauses.append(f"flag_type = ANY(${len(params)}::text[])")
        if severities:
            params.append(severities)
            clauses.append(f"severity = ANY(${len(params)}::text[])")
        if status:
            params.append(status)
            clauses.append(f"status = ${len(params)}")

        query = """
            SELECT id, recognition_id, flag_type, severity, description,
                   detection_method, flagged_by, flagged_at, status,
                   reviewed_at, metadata, original_weight, adjusted_weight
            FROM abuse_flags
        """
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        params.append(limit)
        query += f" ORDER BY flagged_at DESC LIMIT ${len(params)}"

        try:
            rows = await self.db.fetch(query, *params)
        except (asyncpg.PostgresError, OSError) as e:
            raise QueryError(f"abuse flag query failed: {e}") from e

        records = []
        for row in rows:
            record = dict(row)
            raw = record.get("metadata")
            if isinstance(raw, str):
                try:
                    record["metadata"] = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping malformed metadata on flag {record.get('id')}")
                    record["metadata"] = {}
            elif raw is None:
                record["metadata"] = {}
            records.append(record)
        return records

    async def count_resolved_since(self, since: datetime) -> int:
        """Flags moved to RESOLVED at or after `since`."""
        try:
            count = await self.db.fetchval(
                """
                SELECT COUNT(*) FROM abuse_flags
                WHERE status = 'RESOLVED' AND reviewed_at >= $1
                """,
                since,
            )
        except (asyncpg.PostgresError, OSError) as e:
            raise QueryError(f"resolved flag count failed: {e}") from e
        return int(count or 0)
