# ============================================================================
# SHARED TEST FIXTURES
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Tests - Fixtures shared by the sequencer test modules
# PURPOSE: In-memory collaborators and recording operations
# CREATED: 16 OCT 2026
# ============================================================================
"""
Shared fixtures.

Operations are registered in-process with register_operation; the
registry is cleared around every test. Each call to add_operation builds
a fresh class whose calls land in the shared journal fixture:

    add_operation("2024_01_01_000000_a", fails=True)
    journal == [("handle", "2024_01_01_000000_a")]
"""

from dataclasses import replace
from pathlib import Path

import pytest

from core.config import LockDefaults, SequencerConfig, reset_config
from infrastructure.locking import LocalLockService
from infrastructure.migrator import InMemoryMigrator
from messaging.publisher import InMemoryDispatcher
from operations import Operation, SkipOperation, clear_operations, register_operation
from orchestrator import SequentialOrchestrator
from repositories.memory import InMemoryExecutionStore
from services.event_service import EventService


@pytest.fixture(autouse=True)
def clean_registry():
    clear_operations()
    reset_config()
    yield
    clear_operations()
    reset_config()


@pytest.fixture
def journal():
    return []


@pytest.fixture
def add_operation(journal):
    """Register a recording operation under an identity."""

    def _add(
        identity,
        *,
        fails=False,
        skips=False,
        rollbackable=True,
        rollback_fails=False,
        deps=(),
        tag_list=(),
        envs=(),
        run_allowed=True,
        is_async=False,
        in_transaction=False,
        queue_name=None,
        timeout_seconds=None,
        max_tries=None,
    ):
        class Recording(Operation):
            asynchronous = is_async
            within_transaction = in_transaction

            async def handle(self, ctx):
                journal.append(("handle", ctx.identity))
                if skips:
                    raise SkipOperation(f"{ctx.identity} has nothing to do")
                if fails:
                    raise RuntimeError(f"{ctx.identity} exploded")

            def depends_on(self):
                return list(deps)

            def tags(self):
                return list(tag_list)

            def environments(self):
                return list(envs)

            def should_run(self):
                return run_allowed

            def queue(self):
                return queue_name

            def timeout(self):
                return timeout_seconds

            def tries(self):
                return max_tries

        operation_class = Recording
        if rollbackable:
            class RecordingRollback(Recording):
                async def rollback(self, ctx):
                    journal.append(("rollback", ctx.identity))
                    if rollback_fails:
                        raise RuntimeError(f"{ctx.identity} rollback exploded")

            operation_class = RecordingRollback

        register_operation(identity)(operation_class)
        return operation_class

    return _add


@pytest.fixture
def store():
    return InMemoryExecutionStore()


@pytest.fixture
def migrator():
    return InMemoryMigrator()


@pytest.fixture
def dispatcher():
    return InMemoryDispatcher()


@pytest.fixture
def events():
    service = EventService()
    service.keep_history = True
    return service


@pytest.fixture
def operations_dir(tmp_path) -> Path:
    path = tmp_path / "operations_app"
    path.mkdir()
    return path


@pytest.fixture
def migrations_dir(tmp_path) -> Path:
    path = tmp_path / "migrations"
    path.mkdir()
    return path


@pytest.fixture
def write_migration(migrations_dir):
    def _write(identity, text="SELECT 1;"):
        path = migrations_dir / f"{identity}.sql"
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def config(operations_dir, migrations_dir):
    return SequencerConfig(
        discovery_paths=(str(operations_dir),),
        migration_paths=(str(migrations_dir),),
        lock=LockDefaults(timeout_seconds=0.1, ttl_seconds=60, poll_interval_seconds=0.01),
    )


@pytest.fixture
def lock_service():
    return LocalLockService(poll_interval=0.01, leases={})


@pytest.fixture
def make_orchestrator(store, migrator, dispatcher, events, config, lock_service):
    """SequentialOrchestrator wired to in-memory collaborators; kwargs override."""

    def _make(config_overrides=None, **kwargs):
        effective = replace(config, **(config_overrides or {}))
        wiring = dict(
            store=store,
            migrator=migrator,
            config=effective,
            dispatcher=dispatcher,
            lock_service=lock_service,
            events=events,
        )
        wiring.update(kwargs)
        return SequentialOrchestrator(**wiring)

    return _make
