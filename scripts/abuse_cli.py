#!/usr/bin/env python3
# kudosguard - Recognition Abuse Detection
# AGPL-3.0 License

"""
Abuse Detection CLI

Command-line tool for moderators and operators.

Usage:
    # Abuse report for the last 30 days
    python scripts/abuse_cli.py report --range 30d

    # Statistics only, as JSON
    python scripts/abuse_cli.py report --summary --json

    # Pending flags awaiting review
    python scripts/abuse_cli.py pending

    # Dry-run the detectors against live data (nothing is written)
    python scripts/abuse_cli.py evaluate --giver u1 --recipient u2 \\
        --reason "Great job" --weight 3.0 --role USER

    # Flag a recognition manually
    python scripts/abuse_cli.py flag rec_123 --moderator admin_7 --note "Reported by team lead"
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import asyncpg
from dotenv import load_dotenv

from abuse import (
    AbuseDetectionEngine,
    AbuseReportGenerator,
    AbuseSink,
    AbuseThresholds,
    FlagType,
    PostgresAbuseStore,
    RecognitionEvent,
    Severity,
)
from abuse.report import DATE_RANGES

load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
)
logger = logging.getLogger(__name__)


def truncate(text: str, max_len: int = 50) -> str:
    """Truncate text with ellipsis."""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


async def show_report(
    store: PostgresAbuseStore,
    sink: AbuseSink,
    date_range: str,
    summary_only: bool,
    flag_types: list[str],
    severities: list[str],
    as_json: bool,
) -> None:
    """Print an abuse report."""
    generator = AbuseReportGenerator(store, sink)
    report = await generator.generate(
        date_range=date_range,
        flag_types=flag_types or None,
        severities=severities or None,
        summary_only=summary_only,
        requested_by=os.getenv("USER", "cli"),
    )

    if as_json:
        print(json.dumps(report.to_dict(), indent=2, default=str))
        return

    stats = report.statistics
    print(f"Abuse report ({report.date_range}), generated {report.generated_at:%Y-%m-%d %H:%M} UTC")
    print("-" * 70)
    print(f"  Total flags:            {stats.total_flags}")
    print(f"  Pending review:         {stats.pending_review}")
    print(f"  Resolved today:         {stats.resolved_today}")
    print(f"  Critical flags:         {stats.critical_flags}")
    print(f"  Recognitions affected:  {stats.recognitions_affected}")
    adj = stats.weight_adjustments
    print(
        f"  Weight adjustments:     {adj.total_adjustments} "
        f"(avg -{adj.average_reduction}, total -{adj.total_weight_reduced})"
    )
    print()
    print("By type:")
    for flag_type, count in sorted(stats.flags_by_type.items(), key=lambda kv: -kv[1]):
        print(f"  {flag_type:<22} {count:>5}")
    print("By severity:")
    for severity in Severity:
        print(f"  {severity.value:<22} {stats.flags_by_severity.get(severity.value, 0):>5}")

    if summary_only:
        return

    print()
    if not report.suggested_actions:
        print("No pending flags to act on.")
        return

    print(f"Suggested actions (top {len(report.suggested_actions)}):")
    print("-" * 90)
    print(f"{'Recognition':<24} {'Priority':<9} {'Risk':<5} {'Action':<14} {'Reasoning':<35}")
    print("-" * 90)
    for action in report.suggested_actions:
        print(
            f"{truncate(str(action.recognition_id), 24):<24} "
            f"{action.priority.value:<9} "
            f"{action.risk_score:<5} "
            f"{action.action:<14} "
            f"{truncate(action.reasoning, 35)}"
        )


async def show_pending(store: PostgresAbuseStore, limit: int) -> None:
    """Show flags awaiting moderator review."""
    flags = await store.fetch_flags(status="PENDING", limit=limit)

    if not flags:
        print("No pending abuse flags.")
        return

    print(f"Found {len(flags)} pending flags:")
    print("-" * 90)
    print(f"{'ID':<6} {'Recognition':<20} {'Type':<20} {'Sev':<9} {'Description':<35}")
    print("-" * 90)
    for f in flags:
        print(
            f"{f['id']:<6} "
            f"{truncate(str(f['recognition_id']), 20):<20} "
            f"{f['flag_type']:<20} "
            f"{f['severity']:<9} "
            f"{truncate(f['description'], 35)}"
        )


async def dry_run_evaluate(store: PostgresAbuseStore, args: argparse.Namespace) -> None:
    """Run the detectors and scoring without writing flags or audit entries."""
    engine = AbuseDetectionEngine(store, thresholds=AbuseThresholds.from_env())
    event = RecognitionEvent(
        recognition_id=args.recognition_id,
        giver_id=args.giver,
        recipient_id=args.recipient,
        reason_text=args.reason,
        weight=args.weight,
        evidence_count=args.evidence,
        giver_role=args.role,
    )

    outcome = await engine.detect(event)
    if not outcome.ok:
        print(f"Detection failed ({outcome.error.detector}): {outcome.error}")
        print("A live evaluation would fail open (not abusive).")
        return

    result = engine.score(event, outcome.flags)
    if not result.is_abusive:
        print("No abuse signals. Recognition would be stored as-is.")
        return

    print(f"Abusive: severity={result.severity.value} (score {result.total_score})")
    print(f"Weight: {event.weight} -> {result.adjusted_weight}")
    print("-" * 70)
    for flag, reason in zip(result.flags, result.reason_codes):
        print(f"  [{flag.severity.value:<8}] {flag.flag_type.value:<20} {flag.description}")
        print(f"             {reason}")


async def flag_recognition(store: PostgresAbuseStore, sink: AbuseSink, args: argparse.Namespace) -> None:
    """Store a manual flag for a recognition."""
    flag = await sink.record_manual_flag(
        args.recognition_id,
        args.moderator,
        args.note,
        severity=Severity(args.severity),
        flag_type=FlagType(args.type),
    )
    print(f"Flagged {args.recognition_id}: {flag.flag_type.value} ({flag.severity.value})")


async def main():
    parser = argparse.ArgumentParser(description="Recognition abuse detection CLI")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # report command
    report_parser = subparsers.add_parser("report", help="Generate an abuse report")
    report_parser.add_argument("--range", dest="date_range", default="30d", choices=DATE_RANGES)
    report_parser.add_argument("--summary", action="store_true", help="Statistics only")
    report_parser.add_argument(
        "--type", dest="flag_types", action="append", default=[],
        choices=[t.value for t in FlagType], help="Filter by flag type (repeatable)",
    )
    report_parser.add_argument(
        "--severity", dest="severities", action="append", default=[],
        choices=[s.value for s in Severity], help="Filter by severity (repeatable)",
    )
    report_parser.add_argument("--json", action="store_true", help="Print JSON")

    # pending command
    pending_parser = subparsers.add_parser("pending", help="Show pending flags")
    pending_parser.add_argument("--limit", type=int, default=30)

    # evaluate command
    eval_parser = subparsers.add_parser("evaluate", help="Dry-run detection for a recognition")
    eval_parser.add_argument("--recognition-id", default="dry-run")
    eval_parser.add_argument("--giver", required=True)
    eval_parser.add_argument("--recipient", required=True)
    eval_parser.add_argument("--reason", required=True)
    eval_parser.add_argument("--weight", type=float, default=1.0)
    eval_parser.add_argument("--evidence", type=int, default=0)
    eval_parser.add_argument("--role", default="USER", choices=["USER", "MANAGER", "ADMIN"])

    # flag command
    flag_parser = subparsers.add_parser("flag", help="Manually flag a recognition")
    flag_parser.add_argument("recognition_id")
    flag_parser.add_argument("--moderator", required=True)
    flag_parser.add_argument("--note", required=True)
    flag_parser.add_argument(
        "--severity", default="MEDIUM", choices=[s.value for s in Severity]
    )
    flag_parser.add_argument(
        "--type", default="MANUAL", choices=[FlagType.MANUAL.value, FlagType.EVIDENCE.value]
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("Error: DATABASE_URL environment variable not set")
        sys.exit(1)

    thresholds = AbuseThresholds.from_env()
    pool = await asyncpg.create_pool(database_url, min_size=1, max_size=4)
    store = PostgresAbuseStore(pool)
    sink = AbuseSink(store, thresholds.audit_hash_secret)

    try:
        if args.command == "report":
            await show_report(
                store, sink, args.date_range, args.summary,
                args.flag_types, args.severities, args.json,
            )
        elif args.command == "pending":
            await show_pending(store, args.limit)
        elif args.command == "evaluate":
            await dry_run_evaluate(store, args)
        elif args.command == "flag":
            await flag_recognition(store, sink, args)
    finally:
        await pool.close()


if __name__ == "__main__":
    asyncio.run(main())
