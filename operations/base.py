# ============================================================================
# OPERATION BASE
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Operation contract and capabilities
# PURPOSE: Base class, execution context and capability protocols for operations
# CREATED: 13 OCT 2026
# ============================================================================
"""
Operation Base

An operation is a Python class with a handle() method. Everything else is
optional and declared by overriding methods or ClassVars on the base:

    class BackfillUsers(Operation):
        asynchronous = True

        def depends_on(self):
            return ["2024_01_10_090000_create_users"]

        async def handle(self, ctx: OperationContext) -> None:
            ...

Capabilities that need their own body (rollback) are structural
protocols checked with isinstance().

Raising SkipOperation from handle() records the attempt as Skipped and
lets the batch continue.
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Optional, Protocol, runtime_checkable

from core.contracts import ExecutionMethod

logger = logging.getLogger(__name__)


# ============================================================================
# EXECUTION CONTEXT
# ============================================================================

@dataclass
class OperationContext:
    """
    Context passed to handle(), rollback() and lifecycle hooks.

    connection is the open psycopg AsyncConnection when the operation runs
    inside a transaction, otherwise None.
    """
    identity: str
    record_id: Optional[int] = None
    batch_id: Optional[str] = None
    method: ExecutionMethod = ExecutionMethod.SYNC
    environment: Optional[str] = None
    connection: Any = None
    attempt: int = 1
    extra: Dict[str, Any] = field(default_factory=dict)


# ============================================================================
# SKIP SIGNAL
# ============================================================================

class SkipOperation(Exception):
    """Raised by an operation body to skip itself without failing the batch."""

    def __init__(self, reason: str = "Operation skipped"):
        self.reason = reason
        super().__init__(reason)


# ============================================================================
# OPERATION
# ============================================================================

class Operation(ABC):
    """
    Base class for business-logic operations.

    ClassVars:
        asynchronous: Dispatch to the background queue instead of running inline
        within_transaction: Run handle() inside a database transaction
    """

    asynchronous: ClassVar[bool] = False
    within_transaction: ClassVar[bool] = False

    @abstractmethod
    def handle(self, ctx: OperationContext) -> Any:
        """Do the work. May be a plain method or a coroutine."""

    def depends_on(self) -> List[str]:
        """Identities (timestamped names) that must run first."""
        return []

    def tags(self) -> List[str]:
        return []

    def environments(self) -> List[str]:
        """Environments this operation may run in. Empty means any."""
        return []

    def should_run(self) -> bool:
        return True

    def queue(self) -> Optional[str]:
        return None

    def timeout(self) -> Optional[int]:
        """Seconds the worker may spend on this operation."""
        return None

    def tries(self) -> Optional[int]:
        return None

    def allowed_in(self, environment: Optional[str]) -> bool:
        """True when environments() is empty or contains environment."""
        allowed = self.environments()
        if not allowed:
            return True
        return environment in allowed

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"


# ============================================================================
# CAPABILITIES
# ============================================================================

@runtime_checkable
class Rollbackable(Protocol):
    """Operations that can undo their effects when a later task fails."""

    def rollback(self, ctx: OperationContext) -> Any:
        ...


@runtime_checkable
class HasLifecycleHooks(Protocol):
    """Worker-side hooks around an asynchronously dispatched operation."""

    def before(self, ctx: OperationContext) -> Any:
        ...

    def after(self, ctx: OperationContext) -> Any:
        ...

    def failed(self, ctx: OperationContext, error: BaseException) -> Any:
        ...


# ============================================================================
# INVOCATION
# ============================================================================

async def invoke(func: Callable[..., Any], *args: Any) -> Any:
    """
    Call an operation method that may be sync or async.

    Coroutine functions are awaited directly; plain functions run in a
    worker thread with a copy of the current context, log_context fields
    included.
    """
    if inspect.iscoroutinefunction(func):
        return await func(*args)

    result = await asyncio.to_thread(func, *args)
    if inspect.isawaitable(result):
        result = await result
    return result


async def invoke_in_transaction(
    func: Callable[[OperationContext], Any],
    ctx: OperationContext,
    transactions: Any = None,
) -> Any:
    """
    Call func(ctx), inside transactions.begin() when a manager is given.

    The open connection is exposed as ctx.connection for the duration of
    the call. The transaction commits when func returns and rolls back
    when it raises (SkipOperation included).
    """
    if transactions is None:
        return await invoke(func, ctx)

    async with transactions.begin() as conn:
        ctx.connection = conn
        try:
            return await invoke(func, ctx)
        finally:
            ctx.connection = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "Operation",
    "OperationContext",
    "SkipOperation",
    "Rollbackable",
    "HasLifecycleHooks",
    "invoke",
    "invoke_in_transaction",
]
