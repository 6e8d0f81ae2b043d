# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Sequencer configuration
# PURPOSE: Discovery paths, locking, queue routing, guards, transactions
# CREATED: 12 OCT 2026
# ============================================================================
"""
Configuration Defaults

All settings the orchestrator reads live here and are passed to it
explicitly. Values come from code, environment variables or a YAML file.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides (from_env)
- YAML file overrides (from_yaml), needed for guard definitions
"""

import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_paths(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    return tuple(p.strip() for p in raw.split(os.pathsep) if p.strip())


@dataclass(frozen=True)
class LockDefaults:
    """Isolation lock settings."""
    name: str = "sequencer:process"
    timeout_seconds: float = 60.0       # how long process() waits to acquire
    ttl_seconds: int = 600              # lease expiry if the holder dies
    poll_interval_seconds: float = 1.0

    @classmethod
    def from_env(cls) -> "LockDefaults":
        return cls(
            name=os.getenv("SEQUENCER_LOCK_NAME", "sequencer:process"),
            timeout_seconds=float(os.getenv("SEQUENCER_LOCK_TIMEOUT", 60)),
            ttl_seconds=int(os.getenv("SEQUENCER_LOCK_TTL", 600)),
            poll_interval_seconds=float(os.getenv("SEQUENCER_LOCK_POLL", 1.0)),
        )


@dataclass(frozen=True)
class QueueDefaults:
    """
    Defaults for asynchronous dispatch.

    The queue chosen for an async operation is, in order: the queue passed
    to process(), the operation's queue(), then default_queue.
    """
    default_queue: str = "default"
    default_timeout_seconds: Optional[int] = None
    default_tries: int = 1

    @classmethod
    def from_env(cls) -> "QueueDefaults":
        timeout = os.getenv("SEQUENCER_OPERATION_TIMEOUT")
        return cls(
            default_queue=os.getenv("SEQUENCER_QUEUE", "default"),
            default_timeout_seconds=int(timeout) if timeout else None,
            default_tries=int(os.getenv("SEQUENCER_OPERATION_TRIES", 1)),
        )


@dataclass(frozen=True)
class SequencerConfig:
    """
    Everything the orchestrator needs to know besides its collaborators.

    guards is a tuple of {"driver": ..., "config": {...}} mappings consumed
    by services.guards.GuardManager.from_config().
    """
    discovery_paths: Tuple[str, ...] = ("operations_app",)
    migration_paths: Tuple[str, ...] = ("migrations",)
    auto_transaction: bool = False
    record_errors: bool = True
    environment: Optional[str] = None
    lock: LockDefaults = field(default_factory=LockDefaults)
    queue: QueueDefaults = field(default_factory=QueueDefaults)
    guards: Tuple[Mapping[str, Any], ...] = ()

    @classmethod
    def from_env(cls) -> "SequencerConfig":
        """
        Load configuration from environment variables.

        SEQUENCER_DISCOVERY_PATHS / SEQUENCER_MIGRATION_PATHS are os.pathsep
        separated. SEQUENCER_ALLOWED_HOSTS / SEQUENCER_ALLOWED_IPS are comma
        separated and each produce a guard when set.
        """
        guards: List[Dict[str, Any]] = []
        hosts = os.getenv("SEQUENCER_ALLOWED_HOSTS")
        if hosts:
            guards.append({
                "driver": "hostname",
                "config": {"allowed": [h.strip() for h in hosts.split(",") if h.strip()]},
            })
        ips = os.getenv("SEQUENCER_ALLOWED_IPS")
        if ips:
            guards.append({
                "driver": "ip_address",
                "config": {"allowed": [i.strip() for i in ips.split(",") if i.strip()]},
            })

        return cls(
            discovery_paths=_env_paths("SEQUENCER_DISCOVERY_PATHS", ("operations_app",)),
            migration_paths=_env_paths("SEQUENCER_MIGRATION_PATHS", ("migrations",)),
            auto_transaction=_env_bool("SEQUENCER_AUTO_TRANSACTION", False),
            record_errors=_env_bool("SEQUENCER_RECORD_ERRORS", True),
            environment=os.getenv("SEQUENCER_ENV") or None,
            lock=LockDefaults.from_env(),
            queue=QueueDefaults.from_env(),
            guards=tuple(guards),
        )

    @classmethod
    def from_yaml(cls, path: str, base: Optional["SequencerConfig"] = None) -> "SequencerConfig":
        """
        Load configuration from a YAML file.

        Keys not present in the file keep the value from base (or the
        dataclass defaults). Example:

            discovery_paths: [app/operations]
            migration_paths: [db/migrations]
            auto_transaction: true
            lock: {timeout_seconds: 30, ttl_seconds: 300}
            queue: {default_queue: sequencer}
            guards:
              - driver: hostname
                config: {allowed: [prod-worker-01]}
        """
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Sequencer config {path} must be a mapping, got {type(data).__name__}")

        return cls.from_dict(data, base=base)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], base: Optional["SequencerConfig"] = None) -> "SequencerConfig":
        config = base or cls()
        updates: Dict[str, Any] = {}

        for key in ("discovery_paths", "migration_paths"):
            if key in data:
                value = data[key]
                updates[key] = (value,) if isinstance(value, str) else tuple(value)

        for key in ("auto_transaction", "record_errors", "environment"):
            if key in data:
                updates[key] = data[key]

        if "lock" in data:
            updates["lock"] = replace(config.lock, **data["lock"])
        if "queue" in data:
            updates["queue"] = replace(config.queue, **data["queue"])
        if "guards" in data:
            updates["guards"] = tuple(data["guards"] or ())

        return replace(config, **updates)


# ============================================================================
# GLOBAL CONFIG INSTANCE
# ============================================================================

_config: Optional[SequencerConfig] = None


def get_config() -> SequencerConfig:
    """Get global config instance (from environment on first use)."""
    global _config
    if _config is None:
        _config = SequencerConfig.from_env()
    return _config


def reset_config() -> None:
    """Reset config (for testing)."""
    global _config
    _config = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "LockDefaults",
    "QueueDefaults",
    "SequencerConfig",
    "get_config",
    "reset_config",
]
