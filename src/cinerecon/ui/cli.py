from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from signal import SIGINT, signal
from typing import TYPE_CHECKING
from uuid import UUID

from dotenv import load_dotenv

from cinerecon.app import audit_store, delete_cases, reconcile_files
from cinerecon.config import (
    ConfigurationError,
    ReconcileConfig,
    configure_logging,
    get_audit_config,
    get_reconcile_config,
)
from cinerecon.domain.integrity import AuditCheck
from cinerecon.domain.model import RecordKind

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

log = logging.getLogger(__name__)

_FILE_OPTIONS: dict[str, RecordKind] = {
    "sites": RecordKind.SITE,
    "models": RecordKind.PROJECTOR_MODEL,
    "projectors": RecordKind.PROJECTOR,
    "audis": RecordKind.AUDI,
    "dtr": RecordKind.DTR,
    "rma": RecordKind.RMA,
}


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="cinerecon",
        description="Reconcile cinema service spreadsheets into the canonical store",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log matched entities too")
    subparsers = parser.add_subparsers(dest="command", required=True)

    reconcile = subparsers.add_parser("reconcile", help="Reconcile CSV/JSON-lines exports")
    for option, kind in _FILE_OPTIONS.items():
        reconcile.add_argument(
            f"--{option}",
            type=Path,
            help=f"Export file with {kind.value} rows (.csv, .jsonl)",
        )
    reconcile.add_argument(
        "--workers",
        type=int,
        help="Concurrent reconciliation workers (defaults to config)",
    )
    reconcile.add_argument(
        "--report",
        type=Path,
        help="Write every diagnostic as JSON lines to this file",
    )

    audit = subparsers.add_parser("audit", help="Check store integrity and plan repairs")
    audit.add_argument(
        "--check",
        action="append",
        choices=[check.value for check in AuditCheck],
        help="Run only this check (repeatable; default: all)",
    )
    audit.add_argument(
        "--apply",
        action="store_true",
        help="Apply planned site/audi merges (orphans are only reported)",
    )
    audit.add_argument("--report", type=Path, help="Write the plan as JSON to this file")

    delete = subparsers.add_parser("delete-cases", help="Delete reviewed cases by id")
    delete.add_argument("case_ids", nargs="+", help="Case ids (UUID)")

    return parser.parse_args(list(argv))


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as exc:
        raise ValueError(f"Invalid UUID: {value}") from exc


def _input_files(args: argparse.Namespace) -> dict[RecordKind, Path]:
    files: dict[RecordKind, Path] = {}
    for option, kind in _FILE_OPTIONS.items():
        path: Path | None = getattr(args, option)
        if path is None:
            continue
        if not path.is_file():
            raise ValueError(f"--{option}: no such file {path}")
        files[kind] = path
    if not files:
        raise ValueError("Give at least one input file (--sites, --models, ... --rma)")
    return files


def _reconcile_config(args: argparse.Namespace) -> ReconcileConfig:
    config = get_reconcile_config()
    if args.workers is None:
        return config
    if args.workers < 1:
        raise ValueError("--workers must be >= 1")
    return ReconcileConfig(workers=args.workers, max_key_attempts=config.max_key_attempts)


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args: argparse.Namespace
    try:
        parsed_args = _parse_args(args_list)
        configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)
        if parsed_args.command == "reconcile":
            files = _input_files(parsed_args)
            reconcile_config = _reconcile_config(parsed_args)
        elif parsed_args.command == "audit":
            audit_config = get_audit_config()
            checks = [AuditCheck(value) for value in parsed_args.check] if parsed_args.check else None
        elif parsed_args.command == "delete-cases":
            case_ids = [_parse_uuid(value) for value in parsed_args.case_ids]
    except (ValueError, ConfigurationError):
        log.exception("CLI validation error")
        sys.exit(2)

    try:
        if parsed_args.command == "reconcile":
            summary = reconcile_files(
                files,
                config=reconcile_config,
                report_path=parsed_args.report,
            )
            log.info(
                "Reconciled %d rows: %d succeeded, %d failed",
                summary.rows_total,
                summary.rows_succeeded,
                summary.rows_failed,
            )
        elif parsed_args.command == "audit":
            outcome = audit_store(
                checks=checks,
                apply=parsed_args.apply,
                config=audit_config,
                report_path=parsed_args.report,
            )
            if outcome.result is None and outcome.plan.has_changes:
                log.info("Plan not applied; re-run with --apply to execute the merges")
        elif parsed_args.command == "delete-cases":
            result = delete_cases(case_ids)
            log.info("Deleted %d cases (%d not found)", result.cases_deleted, result.stale_entries)
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
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
