# ============================================================================
# SCHEMA MODULE
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Schema generation from Pydantic models
# PURPOSE: Generate PostgreSQL DDL from Pydantic models (single source of truth)
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================

from core.schema.ddl_utils import EnumBuilder, IndexBuilder, SchemaUtils
from core.schema.sql_generator import PydanticToSQL, SEQUENCER_SCHEMA

__all__ = [
    # Generator
    "PydanticToSQL",
    "SEQUENCER_SCHEMA",
    # Utilities
    "IndexBuilder",
    "EnumBuilder",
    "SchemaUtils",
]
