from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import UTC, datetime
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from attestor.app import (
    audit_ledger,
    build_node,
    list_submissions,
    reconcile_once,
    registry_overview,
    run_reconciliation,
    submit_evidence,
    verify_fingerprint,
)
from attestor.config import configure_logging, get_reconciliation_config
from attestor.domain.clock import to_unix_ms

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from attestor.domain.model import EvidenceRecord

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Anchor document fingerprints on the ledger")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    submit = subparsers.add_parser("submit", help="Register a captured document fingerprint")
    submit.add_argument("fingerprint", type=str, help="64 character hex SHA-256 digest")
    submit.add_argument("--submitter", type=str, required=True, help="Submitter identifier")
    submit.add_argument(
        "--captured-at",
        type=str,
        required=True,
        help="Capture time as Unix milliseconds or an ISO-8601 timestamp",
    )
    submit.add_argument("--origin-url", type=str, required=True, help="Where it was captured")
    submit.add_argument("--title", type=str, required=True, help="Document title")

    verify = subparsers.add_parser("verify", help="Look up a fingerprint")
    verify.add_argument("fingerprint", type=str)

    listing = subparsers.add_parser("list", help="List registrations of one submitter")
    listing.add_argument("--submitter", type=str, required=True)

    subparsers.add_parser("stats", help="Show registry counts per status")

    reconcile = subparsers.add_parser("reconcile", help="Confirm registrations on the ledger")
    reconcile.add_argument(
        "--once",
        action="store_true",
        help="Run a single pass over due tasks and exit",
    )
    reconcile.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between passes (defaults to ATTESTOR_TICK_INTERVAL_SECONDS)",
    )

    subparsers.add_parser(
        "audit", help="Re-check finalized registrations against the ledger (read-only)"
    )

    return parser.parse_args(list(argv))


def _parse_captured_at(value: str) -> int:
    normalized = value.strip()
    if normalized.isdigit():
        return int(normalized)
    try:
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        dt = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Invalid capture time: {value}") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return to_unix_ms(dt)


def _record_summary(record: EvidenceRecord) -> dict[str, object]:
    return {
        "fingerprint": record.fingerprint,
        "registration_id": str(record.registration_id),
        "status": record.status.value,
        "ledger_reference": record.ledger_reference,
        "confirmation_count": record.confirmation_count,
        "captured_at": record.captured_at.isoformat(),
        "title": record.title,
    }


def _emit(payload: object) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))  # noqa: T201


def _validate(args: argparse.Namespace) -> None:
    if args.command == "submit":
        args.captured_at_ms = _parse_captured_at(args.captured_at)
    if args.command == "reconcile":
        if args.once and args.interval is not None:
            raise ValueError("--once and --interval are mutually exclusive")
        if args.interval is not None and args.interval <= 0:
            raise ValueError("Interval must be positive")


def _run_continuously(interval: float | None) -> None:
    node = build_node(with_ledger=True)
    effective_interval = interval or get_reconciliation_config().tick_interval_seconds

    def stop_handler(_signal_received: int, _frame: FrameType | None) -> None:
        log.info("Stopping reconciliation after the current pass (Ctrl+C)")
        node.stop()

    signal(SIGINT, stop_handler)
    asyncio.run(run_reconciliation(node=node, interval=effective_interval))


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    parsed_args: argparse.Namespace
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
        _validate(parsed_args)
    except ValueError:
        configure_logging()
        log.exception("CLI validation error")
        sys.exit(2)

    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    try:
        if parsed_args.command == "submit":
            receipt = submit_evidence(
                fingerprint=parsed_args.fingerprint,
                submitter_id=parsed_args.submitter,
                captured_at_ms=parsed_args.captured_at_ms,
                origin_url=parsed_args.origin_url,
                title=parsed_args.title,
            )
            _emit(
                {
                    "registration_id": str(receipt.registration_id),
                    "fingerprint": receipt.fingerprint,
                    "status": receipt.status.value,
                    "duplicate": receipt.duplicate,
                }
            )
        elif parsed_args.command == "verify":
            result = verify_fingerprint(parsed_args.fingerprint)
            _emit(
                {
                    "found": result.found,
                    "fingerprint": result.fingerprint,
                    "status": result.status.value if result.status else None,
                    "registration_id": str(result.registration_id)
                    if result.registration_id
                    else None,
                    "ledger_reference": result.ledger_reference,
                    "confirmation_count": result.confirmation_count,
                    "error_info": result.error_info,
                }
            )
        elif parsed_args.command == "list":
            records = list_submissions(parsed_args.submitter)
            _emit([_record_summary(record) for record in records])
        elif parsed_args.command == "stats":
            overview = registry_overview()
            _emit(
                {
                    "total_count": overview.total_count,
                    "last_merged_sequence": overview.last_merged_sequence,
                    "by_status": {
                        status.value: count for status, count in overview.by_status.items()
                    },
                }
            )
        elif parsed_args.command == "reconcile":
            if parsed_args.once:
                report = reconcile_once()
                _emit({fp: outcome.value for fp, outcome in sorted(report.outcomes.items())})
            else:
                _run_continuously(parsed_args.interval)
        elif parsed_args.command == "audit":
            audit = audit_ledger()
            _emit(
                {
                    "checked": audit.checked,
                    "consistent": audit.consistent,
                    "issues": [
                        {
                            "fingerprint": issue.fingerprint,
                            "finding": issue.finding.value,
                            "detail": issue.detail,
                        }
                        for issue in audit.issues
                    ],
                }
            )
        else:
            raise ValueError(f"Unsupported command: {parsed_args.command}")  # noqa: TRY301

    except Exception:
        log.exception("Fatal error")
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    """Console script entry point."""
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
