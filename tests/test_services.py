# ============================================================================
# SERVICE TESTS
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Tests - Execution guards and lifecycle events
# PURPOSE: Verify host admission rules and fire-and-forget event delivery
# CREATED: 16 OCT 2026
# ============================================================================
"""
Service Tests

Run with:
    pytest tests/test_services.py -v
"""

import asyncio

import pytest

from core.contracts import ExecutionMethod, TaskKind
from core.errors import ExecutionBlockedError
from core.models.events import EventType, SequencerEvent
from services.event_service import EventService
from services.guards import (
    GuardManager,
    HostnameGuard,
    IpAddressGuard,
    ip_matches,
    resolve_driver,
)


# ============================================================================
# GUARDS
# ============================================================================

class TestHostnameGuard:

    def test_empty_list_allows(self):
        assert HostnameGuard({"current_hostname": "anything"}).should_execute()

    def test_allowed_host(self):
        guard = HostnameGuard({"allowed": ["prod-01", "prod-02"], "current_hostname": "prod-02"})
        assert guard.should_execute()

    def test_other_host_blocked(self):
        guard = HostnameGuard({"allowed": ["prod-01"], "current_hostname": "laptop"})
        assert not guard.should_execute()
        assert guard.reason() == (
            "Execution blocked: hostname 'laptop' is not in allowed list [prod-01]"
        )


class TestIpAddressGuard:

    def test_exact_match(self):
        assert ip_matches("192.168.1.20", "192.168.1.20")

    def test_cidr(self):
        assert ip_matches("10.1.2.3", "10.0.0.0/8")
        assert not ip_matches("11.1.2.3", "10.0.0.0/8")

    def test_ipv6_cidr(self):
        assert ip_matches("2001:db8::1", "2001:db8::/32")

    def test_version_mismatch(self):
        assert not ip_matches("10.1.2.3", "2001:db8::/32")

    def test_malformed_entries_never_match(self):
        assert not ip_matches("10.1.2.3", "not-a-network/8")
        assert not ip_matches("10.1.2.3", "10.1.2.4")

    def test_guard_allows_listed_range(self):
        guard = IpAddressGuard({"allowed": ["172.16.0.0/12"], "current_ip": "172.20.1.1"})
        assert guard.should_execute()

    def test_guard_blocks_unlisted(self):
        guard = IpAddressGuard({"allowed": ["172.16.0.0/12"], "current_ip": "8.8.8.8"})
        assert not guard.should_execute()
        assert "'8.8.8.8'" in guard.reason()

    def test_undetected_ip_blocks(self):
        guard = IpAddressGuard({"allowed": ["10.0.0.0/8"], "current_ip": ""})
        assert not guard.should_execute()
        assert guard.reason() == "Execution blocked: could not detect server IP address"


class TestGuardManager:

    def test_no_guards_allows(self):
        manager = GuardManager()
        assert manager.allowed()
        manager.check()

    def test_first_blocking_guard_wins(self):
        manager = GuardManager([
            HostnameGuard({"allowed": ["prod-01"], "current_hostname": "prod-01"}),
            IpAddressGuard({"allowed": ["10.0.0.0/8"], "current_ip": "8.8.8.8"}),
            HostnameGuard({"allowed": ["other"], "current_hostname": "prod-01"}),
        ])

        with pytest.raises(ExecutionBlockedError) as exc_info:
            manager.check()
        assert exc_info.value.guard_name == "IP Address Guard"
        assert manager.blocking_reason() == str(exc_info.value)

    def test_from_config(self):
        manager = GuardManager.from_config([
            {"driver": "hostname", "config": {"allowed": ["a"], "current_hostname": "a"}},
            {"driver": "services.guards.IpAddressGuard", "config": {"current_ip": "1.2.3.4"}},
        ])
        assert [type(g) for g in manager.guards] == [HostnameGuard, IpAddressGuard]
        assert manager.allowed()

    def test_unknown_driver(self):
        with pytest.raises(ValueError, match="Unknown guard driver"):
            resolve_driver("telepathy")

    def test_missing_class(self):
        with pytest.raises(ValueError, match="does not exist"):
            resolve_driver("services.guards.MoonPhaseGuard")

    def test_class_must_be_guard(self):
        with pytest.raises(ValueError, match="must subclass ExecutionGuard"):
            resolve_driver("core.errors.SequencerError")


# ============================================================================
# EVENTS
# ============================================================================

def task_event(event_type=EventType.TASK_ENDED):
    return SequencerEvent.task_event(
        event_type, identity="2024_01_01_000000_a", kind=TaskKind.OPERATION, method=ExecutionMethod.SYNC
    )


class TestEventService:

    def test_sync_listener(self):
        events = EventService()
        received = []
        events.subscribe(EventType.TASK_ENDED, received.append)

        asyncio.run(events.emit(task_event()))
        asyncio.run(events.emit(task_event(EventType.TASK_STARTED)))

        assert [e.event_type for e in received] == [EventType.TASK_ENDED]

    def test_subscribe_all(self):
        events = EventService()
        received = []
        events.subscribe_all(received.append)

        async def scenario():
            await events.emit_batch_started("b-1", task_count=2)
            await events.emit_batch_ended("b-1", task_count=2, elapsed_ms=15)

        asyncio.run(scenario())
        assert [e.event_type for e in received] == [EventType.BATCH_STARTED, EventType.BATCH_ENDED]
        assert received[1].elapsed_ms == 15

    def test_failing_listener_does_not_stop_others(self):
        events = EventService()
        received = []

        def broken(event):
            raise RuntimeError("listener bug")

        events.subscribe(EventType.TASK_ENDED, broken)
        events.subscribe(EventType.TASK_ENDED, received.append)

        asyncio.run(events.emit(task_event()))
        assert len(received) == 1

    def test_async_listener_is_not_awaited_by_emit(self):
        events = EventService()
        received = []
        gate = None

        async def slow(event):
            await gate.wait()
            received.append(event)

        events.subscribe(EventType.TASK_ENDED, slow)

        async def scenario():
            nonlocal gate
            gate = asyncio.Event()
            await events.emit(task_event())
            emitted_before_listener = list(received)
            gate.set()
            await events.drain()
            return emitted_before_listener

        assert asyncio.run(scenario()) == []
        assert len(received) == 1

    def test_failing_async_listener_swallowed(self):
        events = EventService()

        async def broken(event):
            raise RuntimeError("async listener bug")

        events.subscribe(EventType.TASK_FAILED, broken)

        async def scenario():
            await events.emit(task_event(EventType.TASK_FAILED))
            await events.drain()

        asyncio.run(scenario())

    def test_unsubscribe(self):
        events = EventService()
        received = []
        events.subscribe(EventType.TASK_ENDED, received.append)
        events.unsubscribe(received.append)

        asyncio.run(events.emit(task_event()))
        assert received == []

    def test_history(self):
        events = EventService()
        events.keep_history = True

        asyncio.run(events.emit_nothing_pending("b-1"))
        assert events.history[0].event_type == EventType.NOTHING_PENDING
        assert events.history[0].task_count == 0
