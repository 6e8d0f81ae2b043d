# ============================================================================
# SCHEMA MIGRATION LEDGER MODEL
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core model - Applied schema changes
# PURPOSE: One row per schema change the migrator has applied
# CREATED: 13 OCT 2026
# ============================================================================
"""
Schema Migration Ledger

The migrator's own bookkeeping. A schema change is "ran" exactly when
its identity has a row here; rolling it back deletes the row.
"""

from datetime import datetime
from typing import ClassVar, List, Optional

from pydantic import BaseModel, Field

from core.contracts import utcnow


class SchemaMigration(BaseModel):
    """
    Applied schema change.

    Table: sequencer.schema_migrations
    """

    __sql_table__: ClassVar[str] = "schema_migrations"
    __sql_schema__: ClassVar[str] = "sequencer"
    __sql_primary_key__: ClassVar[List[str]] = ["migration"]

    migration: str = Field(..., max_length=255, description="Schema change identity")
    batch_id: Optional[str] = Field(default=None, max_length=64)
    checksum: Optional[str] = Field(
        default=None,
        max_length=64,
        description="sha256 of the applied SQL"
    )
    ran_at: datetime = Field(default_factory=utcnow)


__all__ = ["SchemaMigration"]
