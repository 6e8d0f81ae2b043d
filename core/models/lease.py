# ============================================================================
# SEQUENCER LEASE MODEL
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Lease-based isolation lock
# PURPOSE: Table-based lease with TTL so a crashed holder cannot block forever
# CREATED: 12 OCT 2026
# ============================================================================
"""
Sequencer Lease Model

One row per named lock. A lease is held until released or until
expires_at passes, after which any process may take it over.
"""

from datetime import datetime, timedelta
from typing import ClassVar, List, Optional

from pydantic import BaseModel, Field

from core.contracts import utcnow


class SequencerLease(BaseModel):
    """
    Isolation lease row.

    Table: sequencer.sequencer_locks
    """

    __sql_table__: ClassVar[str] = "sequencer_locks"
    __sql_schema__: ClassVar[str] = "sequencer"
    __sql_primary_key__: ClassVar[List[str]] = ["lock_name"]

    lock_name: str = Field(..., max_length=255)
    holder_id: str = Field(
        ...,
        max_length=64,
        description="UUID of the process holding the lease"
    )
    acquired_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime = Field(..., description="Lease is free once NOW() passes this")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "lock_name": "sequencer:process",
                    "holder_id": "a1b2c3d4-e5f6-7890-abcd-ef1234567890",
                    "acquired_at": "2026-10-12T12:00:00Z",
                    "expires_at": "2026-10-12T12:10:00Z",
                }
            ]
        }
    }

    @classmethod
    def for_holder(cls, lock_name: str, holder_id: str, ttl_seconds: int) -> "SequencerLease":
        now = utcnow()
        return cls(
            lock_name=lock_name,
            holder_id=holder_id,
            acquired_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True once expires_at has passed."""
        return (now or utcnow()) > self.expires_at


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["SequencerLease"]
