# ============================================================================
# SEQUENCER ERRORS
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Foundation - Error taxonomy
# PURPOSE: Structural and execution errors raised by the sequencer
# CREATED: 12 OCT 2026
# ============================================================================
"""
Sequencer Errors

Structural errors (cycle, lock, repeat validation, unsatisfiable
dependencies, blocked host) are raised before any side effect.
Execution errors raised by task bodies are NOT wrapped - the
orchestrator re-raises the original exception after the rollback
cascade so callers observe the real cause.
"""

from typing import List, Optional, Sequence


class SequencerError(Exception):
    """Base class for sequencer errors."""
    pass


class CircularDependencyError(SequencerError):
    """Raised when the dependency graph cannot be ordered."""

    def __init__(self, remaining: Sequence[str]):
        self.remaining: List[str] = list(remaining)
        super().__init__(
            "Circular dependency detected - cannot order tasks: "
            f"{', '.join(self.remaining)}"
        )


class LockUnavailableError(SequencerError):
    """Raised when the isolation lock cannot be acquired within timeout."""

    def __init__(self, lock_name: str, timeout_seconds: float):
        self.lock_name = lock_name
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Could not acquire lock '{lock_name}' within {timeout_seconds}s"
        )


class NeverExecutedError(SequencerError):
    """Raised in repeat mode for an operation that has never run."""

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(
            f"Operation '{identity}' has never been executed. "
            "Repeat mode only re-runs operations that have run before."
        )


class UnknownTaskKindError(SequencerError):
    """Internal invariant violation - a task kind the engine cannot run."""

    def __init__(self, kind: object):
        self.kind = kind
        super().__init__(f"Unknown task kind: {kind}")


class UnsatisfiedDependencyError(SequencerError):
    """Raised when a task depends on work that has not completed."""

    def __init__(self, identity: str, missing: Sequence[str]):
        self.identity = identity
        self.missing: List[str] = list(missing)
        super().__init__(
            f"Task '{identity}' has unsatisfied dependencies: "
            f"{', '.join(self.missing)}"
        )


class ExecutionBlockedError(SequencerError):
    """Raised when an execution guard rejects the current host."""

    def __init__(self, guard_name: str, reason: str):
        self.guard_name = guard_name
        self.reason = reason
        super().__init__(reason)


class InvalidTransitionError(SequencerError):
    """Raised on an illegal execution state transition."""

    def __init__(self, name: str, current: str, target: str):
        self.name = name
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition '{name}' from {current} to {target}")


class OperationLoadError(SequencerError):
    """Raised when an operation file or registration cannot be resolved."""

    def __init__(self, identity: str, reason: str, path: Optional[str] = None):
        self.identity = identity
        self.path = path
        super().__init__(f"Cannot load operation '{identity}': {reason}")


class MigrationFailedError(SequencerError):
    """Raised by the migrator when a schema change cannot be applied."""

    def __init__(self, identity: str, cause: Exception):
        self.identity = identity
        self.cause = cause
        super().__init__(f"Schema change '{identity}' failed: {cause}")


__all__ = [
    "SequencerError",
    "CircularDependencyError",
    "LockUnavailableError",
    "NeverExecutedError",
    "UnknownTaskKindError",
    "UnsatisfiedDependencyError",
    "ExecutionBlockedError",
    "InvalidTransitionError",
    "OperationLoadError",
    "MigrationFailedError",
]
