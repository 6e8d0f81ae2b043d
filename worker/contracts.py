# ============================================================================
# WORKER CONTRACTS
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Async dispatch message contract
# PURPOSE: Message format between the orchestrator and queue workers
# CREATED: 14 OCT 2026
# ============================================================================
"""
Worker Contracts

Message sent for every asynchronously dispatched operation:
{
    "identity": "2024_01_15_120000_backfill_users",
    "record_id": 42,
    "path": "operations_app/2024_01_15_120000_backfill_users.py",
    "queue": "default",
    "batch_id": "3f1c...",
    "timeout": 300,
    "tries": 3,
    "dispatched_at": "2026-10-14T12:00:00+00:00"
}

The orchestrator has already written a Pending record with record_id;
the worker moves that same record to Completed, Skipped or Failed.
"""

import json
import os
import socket
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from core.contracts import utcnow


# ============================================================================
# OPERATION MESSAGE
# ============================================================================

class OperationMessage(BaseModel):
    """Queue message for one dispatched operation."""

    identity: str = Field(..., max_length=255, description="Timestamped operation name")
    record_id: int = Field(..., ge=1, description="Pending ExecutionRecord to finish")
    path: Optional[str] = Field(
        default=None,
        description="Operation file; registered operations are resolved by identity"
    )
    queue: str = Field(default="default", max_length=128)
    batch_id: Optional[str] = Field(default=None, max_length=64)

    # Enforced by the worker, not the orchestrator
    timeout: Optional[int] = Field(default=None, ge=1, description="Seconds allowed")
    tries: Optional[int] = Field(default=None, ge=1, description="Delivery attempts allowed")

    dispatched_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_json(cls, json_str: str) -> "OperationMessage":
        return cls.model_validate_json(json_str)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @property
    def message_id(self) -> str:
        """Stable per record so redelivered duplicates share an id."""
        return f"{self.identity}:{self.record_id}"


# ============================================================================
# WORKER CONFIGURATION
# ============================================================================

@dataclass
class WorkerConfig:
    """Configuration for an operation worker."""

    worker_id: str
    queue_name: str = "default"

    # Stop after this many messages (0 = run until stopped)
    max_messages: int = 0
    max_wait_seconds: int = 30
    shutdown_timeout_seconds: int = 30

    @classmethod
    def from_env(cls) -> "WorkerConfig":
        """
        Environment:
            WORKER_ID: Worker identity (default worker-<hostname>)
            SEQUENCER_QUEUE: Queue to consume
            WORKER_MAX_MESSAGES: Exit after N messages
            WORKER_MAX_WAIT: Receive wait in seconds
            SHUTDOWN_TIMEOUT: Seconds to finish in-flight work on stop
        """
        return cls(
            worker_id=os.getenv("WORKER_ID", f"worker-{socket.gethostname()}"),
            queue_name=os.getenv("SEQUENCER_QUEUE", "default"),
            max_messages=int(os.getenv("WORKER_MAX_MESSAGES", "0")),
            max_wait_seconds=int(os.getenv("WORKER_MAX_WAIT", "30")),
            shutdown_timeout_seconds=int(os.getenv("SHUTDOWN_TIMEOUT", "30")),
        )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["OperationMessage", "WorkerConfig"]
