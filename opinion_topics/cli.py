#!/usr/bin/env python
"""
Opinion topics CLI - run analyses and reconcile the mirror store.

Usage:
    python -m opinion_topics.cli analyze <project_id> --user <user_id>
    python -m opinion_topics.cli analyze <project_id> --user <user_id> --force
    python -m opinion_topics.cli sync                 # Retry pending mirror syncs
    python -m opinion_topics.cli init-db              # Create tables
"""

import argparse
import json
import sys

from .config import load_settings
from .db.connection import connect, init_db
from .db.storage import AnalysisStorage
from .logging_utils import configure_logging, project_context
from .models import RunOptions
from .services import MirrorSync, OpenAICompletionClient, RunOrchestrator, build_mirror_store


def cmd_analyze(args) -> int:
    """Run an analysis for one project."""
    settings = load_settings()
    conn = connect(settings.database_url, settings.statement_timeout_ms)
    try:
        orchestrator = RunOrchestrator(
            storage=AnalysisStorage(conn),
            completion_client=OpenAICompletionClient(
                api_key=settings.openai_api_key,
                model=settings.completion_model,
                timeout=settings.completion_timeout_seconds,
                max_tokens=settings.completion_max_tokens,
            ),
            mirror=build_mirror_store(settings),
            settings=settings,
        )
        with project_context(args.project_id):
            result = orchestrator.run_incremental_analysis(
                args.project_id,
                args.user,
                RunOptions(
                    force_reanalysis=args.force,
                    max_size_units=args.max_size_units,
                    max_count=args.max_count,
                    execution_reason=args.reason,
                ),
            )
    finally:
        conn.close()

    if args.json:
        print(json.dumps(result.model_dump(mode="json"), indent=2))
    return 0 if result.succeeded else 1


def cmd_sync(args) -> int:
    """Push snapshots for projects whose mirror copy is pending or errored."""
    settings = load_settings()
    conn = connect(settings.database_url, settings.statement_timeout_ms)
    try:
        mirror_sync = MirrorSync(
            AnalysisStorage(conn),
            build_mirror_store(settings),
            history_limit=settings.mirror_history_limit,
        )
        results = mirror_sync.sync_pending(args.project)
    finally:
        conn.close()

    failed = [project_id for project_id, ok in results.items() if not ok]
    for project_id in failed:
        print(f"Not synced: {project_id}")
    return 1 if failed else 0


def cmd_init_db(args) -> int:
    """Create the schema."""
    init_db(load_settings().database_url)
    print("Schema initialized.")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Incremental opinion topic analysis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Command")

    # analyze
    p_analyze = subparsers.add_parser("analyze", help="Classify unanalyzed opinions of a project")
    p_analyze.add_argument("project_id", help="Project id or mirror id")
    p_analyze.add_argument("--user", required=True, help="User the run is executed for")
    p_analyze.add_argument("--force", action="store_true", help="Re-classify every opinion")
    p_analyze.add_argument("--max-size-units", type=int, help="Override batch size budget")
    p_analyze.add_argument("--max-count", type=int, help="Override opinions per batch")
    p_analyze.add_argument("--reason", default="manual", help="Execution reason recorded in history")
    p_analyze.add_argument("--json", action="store_true", help="Print the run result as JSON")
    p_analyze.set_defaults(func=cmd_analyze)

    # sync
    p_sync = subparsers.add_parser("sync", help="Retry pending mirror syncs")
    p_sync.add_argument("--project", help="Only this project")
    p_sync.set_defaults(func=cmd_sync)

    # init-db
    p_init = subparsers.add_parser("init-db", help="Create database tables")
    p_init.set_defaults(func=cmd_init_db)

    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
