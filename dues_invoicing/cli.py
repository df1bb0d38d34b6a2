"""Command-line trigger for cron and other schedulers."""

from __future__ import annotations

import argparse
import json
import sys

from .handler import handle
from .logging_setup import configure_logging


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"{raw!r} is not an integer") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return value


def build_event(args: argparse.Namespace) -> dict:
    event: dict = {
        "dry_run": args.dry_run,
        "keep_draft": args.keep_draft,
        "clear_state": args.clear_state,
    }
    if args.pdf_test_limit:
        event["pdf_test_limit"] = args.pdf_test_limit
    if args.full_test_limit:
        event["full_test_limit"] = args.full_test_limit
    if args.ids:
        event["ids"] = [item.strip() for item in args.ids.split(",") if item.strip()]
    return event


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Generate membership renewal invoices")
    parser.add_argument("--dry-run", action="store_true", help="Compute and render without writing anywhere")
    limits = parser.add_mutually_exclusive_group()
    limits.add_argument(
        "--pdf-test-limit",
        type=_positive_int,
        help="Render and store PDFs for the first N memberships without creating invoices",
    )
    limits.add_argument(
        "--full-test-limit",
        type=_positive_int,
        help="Run the full pipeline for the first N memberships without touching run state",
    )
    parser.add_argument("--keep-draft", action="store_true", help="Leave created invoices in draft")
    parser.add_argument("--clear-state", action="store_true", help="Forget progress for the current renewal date")
    parser.add_argument("--ids", help="Comma-separated membership ids to restrict the run to")
    parser.add_argument("--log-level", help="Overrides LOG_LEVEL")

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    result = handle(build_event(args))
    print(json.dumps(result["body"], indent=2))
    return 0 if result["statusCode"] == 200 else 1


if __name__ == "__main__":  # pragma: no cover - manual invocation
    sys.exit(main())
