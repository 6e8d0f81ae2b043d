# ============================================================================
# CLI TESTS
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Tests - tools/sequence.py argument handling and output
# PURPOSE: Verify flags map to ProcessOptions and output formatting
# CREATED: 16 OCT 2026
# ============================================================================
"""
CLI Tests

Run with:
    pytest tests/test_cli.py -v
"""

import asyncio

import pytest

from core.contracts import TaskKind
from core.models import TaskPreview
from orchestrator.sequential import BatchSummary
from tools.sequence import (
    build_parser,
    format_previews,
    format_summary,
    options_from_args,
    run_init_schema,
)


class TestArguments:

    def test_process_flags(self):
        args = build_parser().parse_args([
            "process", "--isolate", "--from", "2024_01_02", "--repeat",
            "--async", "--queue", "reports", "--tag", "billing", "-t", "nightly",
        ])
        options = options_from_args(args)

        assert options.isolate
        assert options.repeat
        assert options.force_async
        assert not options.force_sync
        assert not options.dry_run
        assert options.from_timestamp == "2024_01_02"
        assert options.queue == "reports"
        assert options.tags == ["billing", "nightly"]

    def test_defaults(self):
        options = options_from_args(build_parser().parse_args(["process"]))
        assert not options.isolate
        assert options.tags is None
        assert options.queue is None

    def test_sync_and_async_are_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["process", "--sync", "--async"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_global_options(self):
        args = build_parser().parse_args(["--config", "seq.yaml", "--json-logs", "init-schema", "--dry-run"])
        assert args.config == "seq.yaml"
        assert args.json_logs
        assert args.command == "init-schema"
        assert args.dry_run


class TestOutput:

    def test_previews(self):
        text = format_previews([
            TaskPreview(kind=TaskKind.SCHEMA_CHANGE, timestamp="2024_01_01_000000", identity="2024_01_01_000000_users"),
            TaskPreview(kind=TaskKind.OPERATION, timestamp="2024_01_02_000000", identity="2024_01_02_000000_seed"),
        ])
        lines = text.splitlines()

        assert lines[0].startswith("KIND")
        assert "schema_change" in lines[1] and lines[1].endswith("2024_01_01_000000_users")
        assert lines[2].startswith("operation")
        assert text.endswith("2 task(s) would run.")

    def test_no_previews(self):
        assert format_previews([]) == "Nothing pending."

    def test_summary(self):
        summary = BatchSummary(batch_id="b-1", schema_changes=1, completed=2, failed=1, rolled_back=2, elapsed_ms=40)
        text = format_summary(summary)

        assert text.startswith("Batch b-1:")
        assert "completed=2" in text
        assert "rolled_back=2" in text
        assert text.endswith("(40ms)")

    def test_no_summary(self):
        assert format_summary(None) == "No batch ran."

    def test_init_schema_dry_run_prints_ddl(self, capsys):
        assert asyncio.run(run_init_schema(dry_run=True)) == 0

        out = capsys.readouterr().out
        assert out.startswith('CREATE SCHEMA IF NOT EXISTS "sequencer";')
        assert 'CREATE TABLE IF NOT EXISTS "sequencer"."operations"' in out
