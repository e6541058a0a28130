from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from catalogsync.app import audit_duplicates, export_sheet, import_sheet, sync_platforms
from catalogsync.config import configure_logging, env_flag
from catalogsync.domain.errors import CollectionFetchError
from catalogsync.domain.model import EntityKind

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from catalogsync.domain.model import ReconciliationReport

log = logging.getLogger(__name__)

_KIND_CHOICES = [str(kind) for kind in EntityKind]


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile the book catalog across platforms")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log at DEBUG level",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Push catalog collections to external platforms")
    sync.add_argument(
        "--platform",
        dest="platforms",
        action="append",
        required=True,
        help="Platform id, e.g. woo_moraleja (repeatable)",
    )
    sync.add_argument(
        "--kind",
        dest="kinds",
        action="append",
        choices=_KIND_CHOICES,
        help="Entity kind to sync (repeatable; defaults to all, parents first)",
    )
    sync.add_argument(
        "--recent-hours",
        type=float,
        help="Only sync entities updated within this many hours",
    )
    sync.add_argument(
        "--concurrency",
        type=int,
        help="Parallel workers per kind and platform (defaults to config)",
    )
    _add_dry_run(sync)

    import_cmd = subparsers.add_parser("import-sheet", help="Apply an edited CSV snapshot")
    import_cmd.add_argument("kind", choices=_KIND_CHOICES)
    import_cmd.add_argument(
        "--dir",
        type=Path,
        help="Snapshot directory (defaults to the data directory)",
    )
    _add_dry_run(import_cmd)

    export_cmd = subparsers.add_parser("export-sheet", help="Write a collection to a CSV snapshot")
    export_cmd.add_argument("kind", choices=_KIND_CHOICES)
    export_cmd.add_argument(
        "--dir",
        type=Path,
        help="Snapshot directory (defaults to the data directory)",
    )

    audit = subparsers.add_parser(
        "audit-duplicates",
        help="Report records duplicated by name on external platforms",
    )
    audit.add_argument(
        "--platform",
        dest="platforms",
        action="append",
        required=True,
        help="Platform id (repeatable)",
    )
    audit.add_argument(
        "--kind",
        dest="kinds",
        action="append",
        choices=_KIND_CHOICES,
        help="Entity kind to audit (repeatable; defaults to all)",
    )
    audit.add_argument(
        "--delete",
        action="store_true",
        help="Delete the duplicates, keeping the first record of each group",
    )

    return parser.parse_args(list(argv))


def _add_dry_run(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=env_flag("CATALOGSYNC_DRY_RUN"),
        help="Plan every change without writing anything (env: CATALOGSYNC_DRY_RUN)",
    )


def _validate(args: argparse.Namespace) -> None:
    recent_hours = getattr(args, "recent_hours", None)
    if recent_hours is not None and recent_hours < 0:
        raise ValueError("Recent hours must be non-negative")
    concurrency = getattr(args, "concurrency", None)
    if concurrency is not None and concurrency < 1:
        raise ValueError("Concurrency must be at least 1")


def _log_report(report: ReconciliationReport) -> None:
    log.info("Run finished: %s", report.summary())
    for failure in report.failures:
        log.warning(
            "Failed %s %s on %s: %s",
            failure.kind,
            failure.internal_id,
            failure.platform,
            failure.message,
        )
    for ambiguity in report.ambiguous:
        log.warning(
            "Ambiguous %s %s on %s: candidates %s",
            ambiguity.kind,
            ambiguity.internal_id,
            ambiguity.platform,
            ", ".join(ambiguity.candidate_ids),
        )


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
        _validate(parsed_args)
    except ValueError:
        configure_logging()
        log.exception("CLI validation error")
        sys.exit(2)

    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    report: ReconciliationReport | None = None
    try:
        if parsed_args.command == "sync":
            report = sync_platforms(
                platform_ids=parsed_args.platforms,
                kinds=parsed_args.kinds,
                recent_hours=parsed_args.recent_hours,
                dry_run=parsed_args.dry_run,
                concurrency=parsed_args.concurrency,
            )
        elif parsed_args.command == "import-sheet":
            report = import_sheet(
                kind=parsed_args.kind,
                directory=parsed_args.dir,
                dry_run=parsed_args.dry_run,
            )
        elif parsed_args.command == "export-sheet":
            count = export_sheet(kind=parsed_args.kind, directory=parsed_args.dir)
            log.info("Exported %s %s rows", count, parsed_args.kind)
        elif parsed_args.command == "audit-duplicates":
            audits = audit_duplicates(
                platform_ids=parsed_args.platforms,
                kinds=parsed_args.kinds,
                delete=parsed_args.delete,
            )
            for audit in audits:
                log.info(
                    "%s %s: scanned=%s, duplicates=%s, removed=%s",
                    audit.platform,
                    audit.kind,
                    audit.scanned,
                    audit.duplicate_count,
                    len(audit.removed),
                )
        else:
            raise ValueError(f"Unsupported command: {parsed_args.command}")  # noqa: TRY301

    except CollectionFetchError as exc:
        log.error("Run aborted: %s", exc)  # noqa: TRY400
        if exc.partial_report is not None:
            _log_report(exc.partial_report)
        sys.exit(1)
    except Exception:
        log.exception("Fatal error during sync")
        sys.exit(1)

    if report is not None:
        _log_report(report)
        if not report.ok:
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
