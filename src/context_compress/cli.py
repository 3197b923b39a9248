import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from .config import load_config
from .presentation import render_report
from .services.error_codes import get_catalog_entry
from .services.recency import parse_min_age
from .services.run_context import build_context
from .services.storage import DryRunStorage
from .services.workflows import run_workflows

EXIT_OK = 0
EXIT_MISSING_WORKSPACE = 1
EXIT_WORKFLOW_FAILED = 2

_SECTION_TITLES = {
    "memory": "Section A: Memory Consolidation",
    "bootstrap": "Section B: Bootstrap Compression",
    "skills": "Section C: Skill Index",
}


def _configure_logging(level: str) -> None:
    level = (level or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="context-compress",
        description="Compress workspace context files into pipe-delimited indexes.",
    )
    parser.add_argument("workspace", nargs="?", default=os.getcwd(), help="Workspace directory (default: cwd)")
    parser.add_argument("--dry-run", action="store_true", help="Preview without writing")
    parser.add_argument("--verbose", action="store_true", help="Show per-file details")
    parser.add_argument("--skip-memory", action="store_true", help="Skip memory consolidation")
    parser.add_argument("--skip-bootstrap", action="store_true", help="Skip bootstrap file compression")
    parser.add_argument("--skip-skills", action="store_true", help="Skip skill index generation")
    parser.add_argument("--skills-dir", default=None, help="Skills directory (default: ~/.openclaw/skills)")
    parser.add_argument(
        "--min-age",
        default=None,
        help="Only consolidate notes older than this, e.g. '12' (hours) or '2 days'",
    )
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "WARNING"))
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging("DEBUG" if args.verbose else args.log_level)

    workspace = Path(args.workspace).expanduser().resolve()
    if not workspace.is_dir():
        print(f"Error: workspace directory not found: {workspace}", file=sys.stderr)
        return EXIT_MISSING_WORKSPACE

    config = load_config(workspace)
    min_age = None
    if args.min_age is not None:
        min_age = parse_min_age(args.min_age)
        if min_age is None:
            print(f"Error: could not understand --min-age {args.min_age!r}", file=sys.stderr)
            return EXIT_WORKFLOW_FAILED
    config = config.with_overrides(
        skills_dir=Path(args.skills_dir).expanduser() if args.skills_dir else None,
        min_age=min_age,
        dry_run=args.dry_run,
    )

    print("Context Compress CLI")
    print(f"Workspace: {workspace}")
    if config.dry_run:
        print("Mode: DRY RUN (no files will be written)")

    ctx = build_context(config)
    results = run_workflows(
        ctx,
        skip_memory=args.skip_memory,
        skip_bootstrap=args.skip_bootstrap,
        skip_skills=args.skip_skills,
    )

    changes = []
    for result in results:
        print(f"\n--- {_SECTION_TITLES.get(result.name, result.name)} ---")
        for warning in result.warnings:
            print(f"  Warning: {warning}")
        if result.error_code:
            print(f"  [{result.error_code}] {result.summary}")
            for action in get_catalog_entry(result.error_code).actions:
                print(f"    - {action.label}: {action.description}")
        else:
            print(f"  {result.summary}")
        changes.extend(result.changes)

    print()
    print(render_report(changes))

    if isinstance(ctx.storage, DryRunStorage):
        if args.verbose:
            for operation, target in ctx.storage.planned:
                print(f"  [dry-run] would {operation}: {target}")
        print("\nDry run complete. No files were modified.")
    else:
        print("\nCompression complete.")

    return EXIT_WORKFLOW_FAILED if any(r.error_code for r in results) else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
