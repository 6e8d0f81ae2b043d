#!/usr/bin/env python3
# ============================================================================
# SEQUENCER CLI
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Tool - Command line entry point
# PURPOSE: Run batches and bootstrap the sequencer schema
# CREATED: 15 OCT 2026
# ============================================================================
"""
Run pending schema changes and operations from the command line.

Usage:
    # Run everything pending
    python tools/sequence.py process

    # Preview the order without running anything
    python tools/sequence.py process --dry-run

    # Multi-host safe, resume from a timestamp, only tagged operations
    python tools/sequence.py process --isolate --from 2024_01_15_000000 --tag billing

    # Re-run operations that have run before, all inline
    python tools/sequence.py process --repeat --sync

    # Create the sequencer tables (or print their DDL)
    python tools/sequence.py init-schema --dry-run

Requires:
    DATABASE_URL (or POSTGRES_*) for everything except init-schema --dry-run
    SEQUENCER_SERVICEBUS_CONNECTION_STRING (or managed identity) for async operations
"""

import argparse
import asyncio
import os
import sys
from typing import List, Optional

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import SequencerConfig, get_config
from core.errors import SequencerError
from core.logging import configure_logging, get_logger
from core.models import TaskPreview
from core.schema import PydanticToSQL
from infrastructure.locking import LeaseLockService
from infrastructure.migrator import SqlMigrator
from messaging.config import MessagingConfig
from messaging.publisher import ServiceBusDispatcher
from orchestrator.sequential import BatchSummary, ProcessOptions, SequentialOrchestrator
from repositories.database import DatabasePool, PoolTransactionManager
from repositories.execution_repo import PostgresExecutionStore

logger = get_logger(__name__)


# ============================================================================
# ARGUMENTS
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Order and run schema changes and operations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", "-c", help="YAML config file (overrides environment)")
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    commands = parser.add_subparsers(dest="command", required=True)

    process = commands.add_parser("process", help="Run pending tasks")
    process.add_argument("--isolate", action="store_true", help="Hold the isolation lock for the run")
    process.add_argument("--dry-run", action="store_true", help="Print the order, run nothing")
    process.add_argument(
        "--from", dest="from_timestamp", metavar="YYYY_MM_DD_HHMMSS",
        help="Skip tasks with an earlier timestamp",
    )
    process.add_argument("--repeat", action="store_true", help="Re-run operations that ran before")
    mode = process.add_mutually_exclusive_group()
    mode.add_argument("--sync", dest="force_sync", action="store_true", help="Run every operation inline")
    mode.add_argument("--async", dest="force_async", action="store_true", help="Queue every operation")
    process.add_argument("--queue", "-q", help="Queue for asynchronous operations")
    process.add_argument(
        "--tag", "-t", dest="tags", action="append",
        help="Only operations with this tag (repeatable)",
    )

    init_schema = commands.add_parser("init-schema", help="Create sequencer tables")
    init_schema.add_argument("--dry-run", action="store_true", help="Print DDL instead of executing it")

    return parser


def options_from_args(args: argparse.Namespace) -> ProcessOptions:
    return ProcessOptions(
        isolate=args.isolate,
        dry_run=args.dry_run,
        from_timestamp=args.from_timestamp,
        repeat=args.repeat,
        force_sync=args.force_sync,
        force_async=args.force_async,
        queue=args.queue,
        tags=args.tags,
    )


def load_config(path: Optional[str]) -> SequencerConfig:
    if path:
        return SequencerConfig.from_yaml(path, base=SequencerConfig.from_env())
    return get_config()


# ============================================================================
# OUTPUT
# ============================================================================

def format_previews(previews: List[TaskPreview]) -> str:
    if not previews:
        return "Nothing pending."
    lines = [f"{'KIND':<14} {'TIMESTAMP':<18} IDENTITY"]
    for preview in previews:
        lines.append(f"{preview.kind.value:<14} {preview.timestamp:<18} {preview.identity}")
    lines.append(f"\n{len(previews)} task(s) would run.")
    return "\n".join(lines)


def format_summary(summary: Optional[BatchSummary]) -> str:
    if summary is None:
        return "No batch ran."
    return (
        f"Batch {summary.batch_id}: "
        f"schema_changes={summary.schema_changes} completed={summary.completed} "
        f"skipped={summary.skipped} dispatched={summary.dispatched} "
        f"failed={summary.failed} rolled_back={summary.rolled_back} "
        f"({summary.elapsed_ms}ms)"
    )


# ============================================================================
# COMMANDS
# ============================================================================

def _dispatcher() -> Optional[ServiceBusDispatcher]:
    try:
        return ServiceBusDispatcher(MessagingConfig.from_env())
    except ValueError as e:
        logger.info(f"Async dispatch unavailable: {e}")
        return None


async def run_process(config: SequencerConfig, options: ProcessOptions) -> int:
    dispatcher = None if options.dry_run else _dispatcher()

    async with DatabasePool() as pool:
        store = PostgresExecutionStore(pool)
        migrator = SqlMigrator(pool)
        if not options.dry_run:
            await migrator.ensure_ledger()

        orchestrator = SequentialOrchestrator(
            store=store,
            migrator=migrator,
            config=config,
            dispatcher=dispatcher,
            lock_service=LeaseLockService(pool, poll_interval=config.lock.poll_interval_seconds),
            transactions=PoolTransactionManager(pool),
        )

        try:
            previews = await orchestrator.process(options)
        except SequencerError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1
        except Exception as e:
            print(format_summary(orchestrator.last_summary))
            print(f"FAILED: {type(e).__name__}: {e}", file=sys.stderr)
            return 1
        finally:
            if dispatcher is not None:
                await dispatcher.close()

    if options.dry_run:
        print(format_previews(previews or []))
    else:
        print(format_summary(orchestrator.last_summary))
    return 0


async def run_init_schema(dry_run: bool) -> int:
    generator = PydanticToSQL()

    if dry_run:
        for stmt in generator.generate_all():
            print(stmt.as_string() + ";\n")
        return 0

    async with DatabasePool() as pool:
        async with pool.connection() as conn:
            async with conn.transaction():
                count = await generator.execute(conn)
    print(f"Executed {count} DDL statements")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(level=args.log_level, json_output=args.json_logs)

    if args.command == "init-schema":
        return asyncio.run(run_init_schema(args.dry_run))

    try:
        options = options_from_args(args)
    except ValueError as e:
        parser.error(str(e))

    return asyncio.run(run_process(load_config(args.config), options))


if __name__ == "__main__":
    sys.exit(main())
