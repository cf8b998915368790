#!/usr/bin/env python3
"""Run the merge-suggestion sweep synchronously over existing posts."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.config import settings  # noqa: E402
from app.database import SessionLocal  # noqa: E402
from app.services.merge_check_service import run_merge_sweep  # noqa: E402


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Find duplicate posts and record merge suggestions.")
    parser.add_argument("--dry-run", action="store_true", help="Search and assess without writing suggestions")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Re-check every eligible post, ignoring the last check time",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=0,
        help="Optional cap on posts processed (0 = all)",
    )
    return parser


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    args = _build_parser().parse_args()

    if not settings.llm_configured:
        print("Error: no LLM provider configured (set OPENROUTER_API_KEY or OPENAI_API_KEY)", file=sys.stderr)
        sys.exit(1)

    try:
        result = run_merge_sweep(
            SessionLocal,
            force=bool(args.force),
            dry_run=bool(args.dry_run),
            max_posts=int(args.limit) if args.limit else None,
        )
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    if result.get("status") != "completed":
        print(f"Sweep skipped: {result.get('reason')}")
        return

    print("Merge suggestion backfill summary")
    print(f"  dry_run: {result['dry_run']}")
    print(f"  force: {result['force']}")
    print(f"  processed: {result['processed']}")
    print(f"  checked: {result['checked']}")
    print(f"  suggestions_created: {result['suggestions_created']}")
    print(f"  skipped: {result['skipped']}")
    print(f"  failed: {result['failed']}")
    print(f"  expired: {result['expired']}")


if __name__ == "__main__":
    main()
