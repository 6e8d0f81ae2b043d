# ============================================================================
# EXECUTION GUARDS
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Service - Host admission checks
# PURPOSE: Decide once per run whether this host may execute tasks
# CREATED: 14 OCT 2026
# ============================================================================
"""
Execution Guards

Guards are independent predicates AND-combined by GuardManager. They are
evaluated once before any task runs and never again mid-batch; the
first guard that says no supplies the block reason.

Configured as a list of entries:

    guards:
      - driver: hostname
        config: {allowed: [worker-01, worker-02]}
      - driver: ip_address
        config: {allowed: ["10.0.0.0/8", "192.168.1.20"]}
      - driver: mypackage.guards.MaintenanceWindowGuard
        config: {}

An empty allowed list disables that guard.
"""

import importlib
import ipaddress
import logging
import socket
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Optional, Type

from core.errors import ExecutionBlockedError

logger = logging.getLogger(__name__)


# ============================================================================
# GUARD INTERFACE
# ============================================================================

class ExecutionGuard(ABC):
    """A single admission predicate."""

    name: str = "Execution Guard"

    def __init__(self, config: Optional[Mapping[str, Any]] = None):
        self.config: Dict[str, Any] = dict(config or {})

    @abstractmethod
    def should_execute(self) -> bool:
        ...

    @abstractmethod
    def reason(self) -> str:
        """Why execution is blocked (only meaningful when should_execute() is False)."""


# ============================================================================
# HOSTNAME GUARD
# ============================================================================

class HostnameGuard(ExecutionGuard):
    """Allow only listed hostnames."""

    name = "Hostname Guard"

    def __init__(self, config: Optional[Mapping[str, Any]] = None):
        super().__init__(config)
        self.allowed: List[str] = list(self.config.get("allowed") or [])
        self.current_hostname: str = self.config.get("current_hostname") or socket.gethostname() or "unknown"

    def should_execute(self) -> bool:
        if not self.allowed:
            return True
        return self.current_hostname in self.allowed

    def reason(self) -> str:
        return (
            f"Execution blocked: hostname '{self.current_hostname}' is not in allowed list "
            f"[{', '.join(self.allowed)}]"
        )


# ============================================================================
# IP ADDRESS GUARD
# ============================================================================

def detect_ip() -> str:
    """
    Best-effort address of this host, or "" when none can be found.

    Tries the hostname's resolved address first, then the source address
    the kernel would use for an outbound UDP socket (no packet is sent).
    """
    try:
        ip = socket.gethostbyname(socket.gethostname())
        if not ipaddress.ip_address(ip).is_loopback:
            return ip
    except (OSError, ValueError):
        pass

    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("10.255.255.255", 1))
            ip = sock.getsockname()[0]
            if not ipaddress.ip_address(ip).is_loopback:
                return ip
    except (OSError, ValueError):
        pass

    return ""


def ip_matches(ip: str, allowed: str) -> bool:
    """Exact match, or membership in an IPv4/IPv6 CIDR range of the same version."""
    if ip == allowed:
        return True
    if "/" not in allowed:
        return False
    try:
        address = ipaddress.ip_address(ip)
        network = ipaddress.ip_network(allowed, strict=False)
    except ValueError:
        return False
    if address.version != network.version:
        return False
    return address in network


class IpAddressGuard(ExecutionGuard):
    """Allow only listed addresses or ranges. Blocks when the IP cannot be detected."""

    name = "IP Address Guard"

    def __init__(self, config: Optional[Mapping[str, Any]] = None):
        super().__init__(config)
        self.allowed: List[str] = list(self.config.get("allowed") or [])
        current = self.config.get("current_ip")
        self.current_ip: str = current if current is not None else detect_ip()

    def should_execute(self) -> bool:
        if not self.allowed:
            return True
        if not self.current_ip:
            return False
        return any(ip_matches(self.current_ip, allowed) for allowed in self.allowed)

    def reason(self) -> str:
        if not self.current_ip:
            return "Execution blocked: could not detect server IP address"
        return (
            f"Execution blocked: IP address '{self.current_ip}' is not in allowed list "
            f"[{', '.join(self.allowed)}]"
        )


# ============================================================================
# GUARD MANAGER
# ============================================================================

GUARD_DRIVERS: Dict[str, Type[ExecutionGuard]] = {
    "hostname": HostnameGuard,
    "ip_address": IpAddressGuard,
}


def resolve_driver(driver: str) -> Type[ExecutionGuard]:
    """
    Map a driver name or dotted class path to a guard class.

    Raises:
        ValueError: Unknown driver, or the class is not an ExecutionGuard
    """
    if driver in GUARD_DRIVERS:
        return GUARD_DRIVERS[driver]

    module_name, _, class_name = driver.rpartition(".")
    if not module_name:
        raise ValueError(f"Unknown guard driver '{driver}'")
    try:
        guard_class = getattr(importlib.import_module(module_name), class_name)
    except (ImportError, AttributeError) as e:
        raise ValueError(f"Guard class '{driver}' does not exist") from e

    if not (isinstance(guard_class, type) and issubclass(guard_class, ExecutionGuard)):
        raise ValueError(f"Guard class '{driver}' must subclass ExecutionGuard")
    return guard_class


class GuardManager:
    """AND-combination of guards."""

    def __init__(self, guards: Optional[Iterable[ExecutionGuard]] = None):
        self.guards: List[ExecutionGuard] = list(guards or [])

    @classmethod
    def from_config(cls, entries: Iterable[Mapping[str, Any]]) -> "GuardManager":
        guards = []
        for entry in entries:
            guard_class = resolve_driver(entry["driver"])
            guards.append(guard_class(entry.get("config") or {}))
        return cls(guards)

    def blocking_guard(self) -> Optional[ExecutionGuard]:
        """First guard that rejects this host, or None."""
        for guard in self.guards:
            if not guard.should_execute():
                return guard
        return None

    def allowed(self) -> bool:
        return self.blocking_guard() is None

    def blocking_reason(self) -> Optional[str]:
        guard = self.blocking_guard()
        return guard.reason() if guard else None

    def check(self) -> None:
        """
        Raises:
            ExecutionBlockedError: a guard rejected this host
        """
        guard = self.blocking_guard()
        if guard is not None:
            reason = guard.reason()
            logger.warning(f"{guard.name}: {reason}")
            raise ExecutionBlockedError(guard.name, reason)


__all__ = [
    "ExecutionGuard",
    "HostnameGuard",
    "IpAddressGuard",
    "GuardManager",
    "GUARD_DRIVERS",
    "resolve_driver",
    "ip_matches",
    "detect_ip",
]
