# ============================================================================
# DDL UTILITIES
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Shared builders for SQL DDL generation
# PURPOSE: Index, enum and schema builders using psycopg.sql
# LAST_REVIEWED: 14 OCT 2026
# EXPORTS: IndexBuilder, EnumBuilder, SchemaUtils
# DEPENDENCIES: psycopg
# ============================================================================
"""
DDL Utilities - Shared SQL Generation Patterns.

All methods return psycopg.sql.Composed objects for safe execution.
No string concatenation of identifiers - full SQL composition.

Usage:
    from core.schema.ddl_utils import IndexBuilder

    idx = IndexBuilder.btree("sequencer", "operations", ["name"])
    await conn.execute(idx)
"""

from enum import Enum
from typing import List, Optional, Sequence, Type, Union

from psycopg import sql


# ============================================================================
# INDEX BUILDER
# ============================================================================

class IndexBuilder:
    """Builder for PostgreSQL index DDL statements."""

    @staticmethod
    def _normalize_columns(columns: Union[str, Sequence[str]]) -> List[str]:
        if isinstance(columns, str):
            return [columns]
        return list(columns)

    @staticmethod
    def default_name(table: str, columns: List[str], prefix: str = "idx") -> str:
        """Conventional index name: idx_<table>_<col1>_<col2>."""
        return f"{prefix}_{table}_{'_'.join(columns)}"

    @staticmethod
    def btree(
        schema: str,
        table: str,
        columns: Union[str, Sequence[str]],
        name: Optional[str] = None,
        partial_where: Optional[str] = None,
        unique: bool = False,
    ) -> sql.Composed:
        """
        Create B-tree index.

        Args:
            schema: Schema name
            table: Table name
            columns: Column name(s) to index
            name: Optional custom index name
            partial_where: Optional WHERE clause for partial index
            unique: Create a UNIQUE index

        Returns:
            sql.Composed CREATE INDEX statement
        """
        cols = IndexBuilder._normalize_columns(columns)
        idx_name = name or IndexBuilder.default_name(
            table, cols, prefix="idx_unique" if unique else "idx"
        )

        stmt = sql.SQL("CREATE {unique}INDEX IF NOT EXISTS {name} ON {schema}.{table} ({columns})").format(
            unique=sql.SQL("UNIQUE " if unique else ""),
            name=sql.Identifier(idx_name),
            schema=sql.Identifier(schema),
            table=sql.Identifier(table),
            columns=sql.SQL(", ").join(sql.Identifier(c) for c in cols),
        )

        if partial_where:
            stmt = sql.SQL("{} WHERE {}").format(stmt, sql.SQL(partial_where))

        return stmt


# ============================================================================
# ENUM BUILDER
# ============================================================================

class EnumBuilder:
    """Builder for PostgreSQL ENUM types backed by Python str enums."""

    @staticmethod
    def create_if_missing(schema: str, type_name: str, enum_class: Type[Enum]) -> sql.Composed:
        """CREATE TYPE guarded by a pg_type lookup (safe to re-run)."""
        values = sql.SQL(", ").join(sql.Literal(m.value) for m in enum_class)
        return sql.SQL(
            "DO $$ BEGIN "
            "IF NOT EXISTS (SELECT 1 FROM pg_type t JOIN pg_namespace n ON n.oid = t.typnamespace "
            "WHERE t.typname = {type_literal} AND n.nspname = {schema_literal}) THEN "
            "CREATE TYPE {schema}.{type_name} AS ENUM ({values}); "
            "END IF; END $$"
        ).format(
            type_literal=sql.Literal(type_name),
            schema_literal=sql.Literal(schema),
            schema=sql.Identifier(schema),
            type_name=sql.Identifier(type_name),
            values=values,
        )

    @staticmethod
    def drop_and_create(schema: str, type_name: str, enum_class: Type[Enum]) -> List[sql.Composed]:
        """DROP CASCADE + CREATE. Destroys dependent columns."""
        values = sql.SQL(", ").join(sql.Literal(m.value) for m in enum_class)
        return [
            sql.SQL("DROP TYPE IF EXISTS {}.{} CASCADE").format(
                sql.Identifier(schema), sql.Identifier(type_name)
            ),
            sql.SQL("CREATE TYPE {}.{} AS ENUM ({})").format(
                sql.Identifier(schema), sql.Identifier(type_name), values
            ),
        ]


# ============================================================================
# SCHEMA UTILITIES
# ============================================================================

class SchemaUtils:
    """Schema-level DDL helpers."""

    @staticmethod
    def create_schema(schema: str) -> sql.Composed:
        return sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(schema))

    @staticmethod
    def drop_schema(schema: str) -> sql.Composed:
        """DROP SCHEMA CASCADE - destroys all data in the schema."""
        return sql.SQL("DROP SCHEMA IF EXISTS {} CASCADE").format(sql.Identifier(schema))

    @staticmethod
    def set_search_path(schema: str, include_public: bool = True) -> sql.Composed:
        if include_public:
            return sql.SQL("SET search_path TO {}, public").format(sql.Identifier(schema))
        return sql.SQL("SET search_path TO {}").format(sql.Identifier(schema))


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "IndexBuilder",
    "EnumBuilder",
    "SchemaUtils",
]
