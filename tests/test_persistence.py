# ============================================================================
# PERSISTENCE TESTS
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Tests - Record store, migrator, isolation lock, DDL
# PURPOSE: Verify the storage-facing collaborators of the orchestrator
# CREATED: 16 OCT 2026
# ============================================================================
"""
Persistence Tests

Covers:
1. InMemoryExecutionStore semantics ("latest" = highest id)
2. InMemoryMigrator and SqlMigrator (mocked pool)
3. LocalLockService contention, timeout, expiry and release
4. DDL generated from the persisted models

Run with:
    pytest tests/test_persistence.py -v
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.contracts import ExecutionState, TaskKind
from core.errors import LockUnavailableError, MigrationFailedError
from core.models import ExecutionRecord, OperationError, Task
from core.schema import PydanticToSQL
from infrastructure.locking import LocalLockService
from infrastructure.migrator import InMemoryMigrator, SqlMigrator, checksum
from repositories.execution_repo import PostgresExecutionStore
from repositories.memory import InMemoryExecutionStore


def completed(name):
    record = ExecutionRecord(name=name)
    record.mark_completed()
    return record


def failed(name):
    record = ExecutionRecord(name=name)
    record.mark_failed()
    return record


def schema_task(identity, path=None):
    return Task(kind=TaskKind.SCHEMA_CHANGE, timestamp=identity[:17], identity=identity, path=path)


# ============================================================================
# IN-MEMORY STORE
# ============================================================================

class TestInMemoryExecutionStore:

    def test_create_assigns_increasing_ids(self):
        store = InMemoryExecutionStore()
        first = asyncio.run(store.create(ExecutionRecord(name="a")))
        second = asyncio.run(store.create(ExecutionRecord(name="b")))
        assert (first.id, second.id) == (1, 2)

    def test_latest_is_highest_id(self):
        store = InMemoryExecutionStore()
        store.seed(completed("a"))
        store.seed(failed("a"))

        latest = asyncio.run(store.latest("a"))
        assert latest.id == 2
        assert latest.state == ExecutionState.FAILED

    def test_latest_states_and_successful_names(self):
        store = InMemoryExecutionStore()
        store.seed(failed("a"))
        store.seed(completed("a"))
        store.seed(completed("b"))
        store.seed(failed("b"))
        skipped = ExecutionRecord(name="c")
        skipped.mark_skipped("n/a")
        store.seed(skipped)

        states = asyncio.run(store.latest_states())
        assert states == {
            "a": ExecutionState.COMPLETED,
            "b": ExecutionState.FAILED,
            "c": ExecutionState.SKIPPED,
        }
        assert asyncio.run(store.latest_states(["a"])) == {"a": ExecutionState.COMPLETED}
        assert asyncio.run(store.successful_names()) == {"a", "c"}

    def test_executed_names_includes_any_successful_attempt(self):
        store = InMemoryExecutionStore()
        store.seed(completed("a"))
        store.seed(failed("a"))
        store.seed(failed("b"))
        assert asyncio.run(store.executed_names()) == {"a"}

    def test_is_satisfied(self):
        store = InMemoryExecutionStore()
        store.seed(completed("a"))
        assert asyncio.run(store.is_satisfied("a"))
        assert not asyncio.run(store.is_satisfied("missing"))

    def test_update_requires_saved_record(self):
        store = InMemoryExecutionStore()
        with pytest.raises(ValueError):
            asyncio.run(store.update(ExecutionRecord(name="a")))

    def test_stored_copy_is_isolated(self):
        store = InMemoryExecutionStore()
        record = asyncio.run(store.create(ExecutionRecord(name="a")))
        record.mark_completed()

        assert store.records_for("a")[0].state == ExecutionState.PENDING
        asyncio.run(store.update(record))
        assert store.records_for("a")[0].state == ExecutionState.COMPLETED

    def test_errors_for_record(self):
        store = InMemoryExecutionStore()
        asyncio.run(store.record_error(OperationError.from_exception(1, RuntimeError("x"))))
        asyncio.run(store.record_error(OperationError.from_exception(2, RuntimeError("y"))))

        errors = asyncio.run(store.errors_for(1))
        assert [e.message for e in errors] == ["x"]


# ============================================================================
# MIGRATORS
# ============================================================================

def mock_pool(execute_side_effect=None, rows=None):
    """Pool whose connection() / transaction() are async context managers."""
    result = MagicMock()
    result.fetchall = AsyncMock(return_value=rows or [])

    conn = MagicMock()
    conn.execute = AsyncMock(return_value=result, side_effect=execute_side_effect)

    transaction = MagicMock()
    transaction.__aenter__ = AsyncMock(return_value=None)
    transaction.__aexit__ = AsyncMock(return_value=False)
    conn.transaction.return_value = transaction

    connection = MagicMock()
    connection.__aenter__ = AsyncMock(return_value=conn)
    connection.__aexit__ = AsyncMock(return_value=False)

    pool = MagicMock()
    pool.connection.return_value = connection
    return pool, conn


class TestInMemoryMigrator:

    def test_run_records_ledger(self):
        migrator = InMemoryMigrator(applied=["2024_01_01_000000_base"])
        task = schema_task("2024_01_02_000000_users")

        entry = asyncio.run(migrator.run(task, batch_id="b-1"))
        assert entry.batch_id == "b-1"
        assert asyncio.run(migrator.ran()) == {"2024_01_01_000000_base", "2024_01_02_000000_users"}
        assert migrator.applied_order == ["2024_01_02_000000_users"]

    def test_fail_on(self):
        migrator = InMemoryMigrator(fail_on=["2024_01_02_000000_users"])
        with pytest.raises(MigrationFailedError):
            asyncio.run(migrator.run(schema_task("2024_01_02_000000_users")))
        assert asyncio.run(migrator.ran()) == set()

    def test_pending(self):
        migrator = InMemoryMigrator(applied=["2024_01_01_000000_base"])
        tasks = [schema_task("2024_01_01_000000_base"), schema_task("2024_01_02_000000_users")]
        pending = asyncio.run(migrator.pending(tasks))
        assert [t.identity for t in pending] == ["2024_01_02_000000_users"]


class TestSqlMigrator:

    def test_run_executes_file_and_ledger_row(self, tmp_path):
        path = tmp_path / "2024_01_02_000000_users.sql"
        path.write_text("CREATE TABLE users (id int);")
        pool, conn = mock_pool()

        entry = asyncio.run(SqlMigrator(pool).run(schema_task(path.stem, str(path)), batch_id="b-1"))

        assert conn.execute.await_count == 2
        assert conn.execute.await_args_list[0].args[0] == "CREATE TABLE users (id int);"
        ledger_params = conn.execute.await_args_list[1].args[1]
        assert ledger_params[0] == "2024_01_02_000000_users"
        assert ledger_params[1] == "b-1"
        assert entry.checksum == checksum("CREATE TABLE users (id int);")

    def test_empty_file_only_writes_ledger(self, tmp_path):
        path = tmp_path / "2024_01_02_000000_empty.sql"
        path.write_text("  \n")
        pool, conn = mock_pool()

        asyncio.run(SqlMigrator(pool).run(schema_task(path.stem, str(path))))
        assert conn.execute.await_count == 1

    def test_sql_error_wrapped(self, tmp_path):
        path = tmp_path / "2024_01_02_000000_bad.sql"
        path.write_text("CREATE TABLE")
        pool, _ = mock_pool(execute_side_effect=RuntimeError("syntax error"))

        with pytest.raises(MigrationFailedError) as exc_info:
            asyncio.run(SqlMigrator(pool).run(schema_task(path.stem, str(path))))
        assert exc_info.value.identity == "2024_01_02_000000_bad"
        assert "syntax error" in str(exc_info.value.cause)

    def test_missing_file(self, tmp_path):
        pool, conn = mock_pool()
        task = schema_task("2024_01_02_000000_gone", str(tmp_path / "gone.sql"))

        with pytest.raises(MigrationFailedError):
            asyncio.run(SqlMigrator(pool).run(task))
        conn.execute.assert_not_awaited()

    def test_ran_reads_ledger(self):
        pool, _ = mock_pool(rows=[{"migration": "2024_01_01_000000_base"}])
        assert asyncio.run(SqlMigrator(pool).ran()) == {"2024_01_01_000000_base"}


class TestPostgresExecutionStore:

    def test_successful_names_derived_from_timestamps(self):
        now = datetime.now(timezone.utc)
        pool, conn = mock_pool(rows=[
            {"name": "2024_01_01_000000_done", "completed_at": now, "failed_at": None,
             "skipped_at": None, "rolled_back_at": None},
            {"name": "2024_01_02_000000_skipped", "completed_at": None, "failed_at": None,
             "skipped_at": now, "rolled_back_at": None},
            {"name": "2024_01_03_000000_rolled", "completed_at": now, "failed_at": None,
             "skipped_at": None, "rolled_back_at": now},
            {"name": "2024_01_04_000000_failed", "completed_at": None, "failed_at": now,
             "skipped_at": None, "rolled_back_at": None},
        ])

        names = asyncio.run(PostgresExecutionStore(pool).successful_names())

        assert names == {"2024_01_01_000000_done", "2024_01_02_000000_skipped"}
        query = conn.execute.await_args.args[0].as_string()
        assert "DISTINCT ON (name)" in query


# ============================================================================
# ISOLATION LOCK
# ============================================================================

class TestLocalLockService:

    def test_second_holder_waits_then_times_out(self):
        leases = {}
        first = LocalLockService(poll_interval=0.01, leases=leases)
        second = LocalLockService(poll_interval=0.01, leases=leases)

        async def scenario():
            await first.acquire("sequencer:process", timeout=1, ttl_seconds=60)
            with pytest.raises(LockUnavailableError) as exc_info:
                await second.acquire("sequencer:process", timeout=0.05, ttl_seconds=60)
            return exc_info.value

        error = asyncio.run(scenario())
        assert error.lock_name == "sequencer:process"
        assert first.is_held("sequencer:process")

    def test_expired_lease_can_be_taken(self):
        leases = {}
        first = LocalLockService(poll_interval=0.01, leases=leases)
        second = LocalLockService(poll_interval=0.01, leases=leases)

        asyncio.run(first.acquire("lock", timeout=1, ttl_seconds=60))
        first.expire("lock")

        assert asyncio.run(second.try_acquire("lock", ttl_seconds=60))
        assert leases["lock"].holder_id == second.holder_id

    def test_hold_releases_on_error(self):
        lock = LocalLockService(poll_interval=0.01, leases={})

        async def scenario():
            async with lock.hold("lock", timeout=1, ttl_seconds=60):
                assert lock.is_held("lock")
                raise RuntimeError("body failed")

        with pytest.raises(RuntimeError):
            asyncio.run(scenario())
        assert not lock.is_held("lock")

    def test_release_ignores_other_holder(self):
        leases = {}
        owner = LocalLockService(leases=leases)
        other = LocalLockService(leases=leases)

        asyncio.run(owner.try_acquire("lock", ttl_seconds=60))
        asyncio.run(other.release("lock"))
        assert owner.is_held("lock")

    def test_waiter_gets_lock_after_release(self):
        leases = {}
        first = LocalLockService(poll_interval=0.01, leases=leases)
        second = LocalLockService(poll_interval=0.01, leases=leases)

        async def scenario():
            await first.acquire("lock", timeout=1, ttl_seconds=60)
            waiter = asyncio.create_task(second.acquire("lock", timeout=1, ttl_seconds=60))
            await asyncio.sleep(0.03)
            assert not waiter.done()
            await first.release("lock")
            await waiter

        asyncio.run(scenario())
        assert leases["lock"].holder_id == second.holder_id

    def test_with_lock_returns_body_result(self):
        lock = LocalLockService(leases={})

        async def body():
            return 42

        assert asyncio.run(lock.with_lock(body, "lock", timeout=1, ttl_seconds=60)) == 42
        assert not lock.is_held("lock")


# ============================================================================
# DDL
# ============================================================================

class TestSchemaGeneration:

    def test_generate_all(self):
        statements = [stmt.as_string() for stmt in PydanticToSQL().generate_all()]
        ddl = "\n".join(statements)

        assert statements[0].startswith("CREATE SCHEMA IF NOT EXISTS")
        assert 'CREATE TABLE IF NOT EXISTS "sequencer"."operations"' in ddl
        assert 'CREATE TABLE IF NOT EXISTS "sequencer"."operation_errors"' in ddl
        assert 'CREATE TABLE IF NOT EXISTS "sequencer"."sequencer_locks"' in ddl
        assert 'CREATE TABLE IF NOT EXISTS "sequencer"."schema_migrations"' in ddl
        assert '"id" SERIAL' in ddl
        assert '"name" VARCHAR(255) NOT NULL' in ddl
        assert '"state" "sequencer"."execution_state"' in ddl
        assert 'REFERENCES "sequencer"."operations" ("id") ON DELETE CASCADE' in ddl

    def test_enum_types_precede_tables(self):
        statements = [stmt.as_string() for stmt in PydanticToSQL().generate_all()]
        enum_index = next(i for i, s in enumerate(statements) if "execution_state" in s)
        table_index = next(i for i, s in enumerate(statements) if '"operations" (' in s)
        assert enum_index < table_index

    def test_task_is_not_persisted(self):
        with pytest.raises(ValueError, match="__sql_table__"):
            PydanticToSQL().generate_table(Task)
