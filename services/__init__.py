# ============================================================================
# SERVICES MODULE
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Cross-cutting services
# PURPOSE: Lifecycle signals and host admission guards
# CREATED: 14 OCT 2026
# ============================================================================
"""
Services Module

Usage:
    from services import EventService, GuardManager

    events = EventService()
    guards = GuardManager.from_config(config.guards)
"""

from .event_service import EventService
from .guards import (
    ExecutionGuard,
    GuardManager,
    HostnameGuard,
    IpAddressGuard,
)

__all__ = [
    "EventService",
    "ExecutionGuard",
    "GuardManager",
    "HostnameGuard",
    "IpAddressGuard",
]
