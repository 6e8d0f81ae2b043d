# ============================================================================
# PYDANTIC TO SQL GENERATOR
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - DDL generation from Pydantic models
# PURPOSE: Generate PostgreSQL CREATE statements for the sequencer tables
# LAST_REVIEWED: 14 OCT 2026
# EXPORTS: PydanticToSQL
# DEPENDENCIES: pydantic, psycopg
# ============================================================================
"""
Pydantic to PostgreSQL Schema Generator.

Pydantic models are the single source of truth for the sequencer schema.

Model Metadata Convention:
    - __sql_table__: Table name
    - __sql_schema__: Schema name
    - __sql_primary_key__: Primary key column(s) - string or list
    - __sql_foreign_keys__: Dict of {column: "schema.table(column)"}
    - __sql_indexes__: List of (name, columns[, partial_where]) tuples
    - __sql_serial_columns__: Columns that should be SERIAL

Computed fields (e.g. ExecutionRecord.state) become ordinary columns so
they can be indexed; the repository keeps them in sync on write.

Usage:
    generator = PydanticToSQL()
    async with pool.connection() as conn:
        await generator.execute(conn)
"""

import logging
import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type, Union, get_args, get_origin

from annotated_types import MaxLen
from psycopg import sql
from pydantic import BaseModel

from core.schema.ddl_utils import EnumBuilder, IndexBuilder, SchemaUtils

logger = logging.getLogger(__name__)

SEQUENCER_SCHEMA = "sequencer"


class PydanticToSQL:
    """
    Convert Pydantic models to PostgreSQL DDL statements.

    Enum-typed fields become schema-qualified ENUM types named after the
    Python class in snake_case (ExecutionMethod -> execution_method).
    """

    TYPE_MAP = {
        str: "VARCHAR",
        int: "INTEGER",
        float: "DOUBLE PRECISION",
        bool: "BOOLEAN",
        datetime: "TIMESTAMPTZ",
        dict: "JSONB",
        list: "JSONB",
    }

    def __init__(self, schema_name: str = SEQUENCER_SCHEMA, destructive: bool = False):
        """
        Args:
            schema_name: Schema to create and to use for models without __sql_schema__
            destructive: DROP+CREATE enum types instead of create-if-missing
        """
        self.schema_name = schema_name
        self.destructive = destructive
        self.enums: Dict[str, Type[Enum]] = {}

    # =========================================================================
    # METADATA EXTRACTION
    # =========================================================================

    def get_model_metadata(self, model: Type[BaseModel]) -> Dict[str, Any]:
        """
        Extract SQL DDL metadata from a Pydantic model.

        Python mangles __sql_table__ inside the class body to
        _ClassName__sql_table__, so both spellings are checked.
        """
        def get_attr(name: str, default=None):
            mangled = f"_{model.__name__}__{name}"
            return getattr(model, mangled, getattr(model, f"__{name}", default))

        primary_key = get_attr("sql_primary_key__", [])
        return {
            "table": get_attr("sql_table__"),
            "schema": get_attr("sql_schema__", self.schema_name),
            "primary_key": [primary_key] if isinstance(primary_key, str) else list(primary_key),
            "foreign_keys": get_attr("sql_foreign_keys__", {}),
            "indexes": get_attr("sql_indexes__", []),
            "serial_columns": get_attr("sql_serial_columns__", []),
        }

    # =========================================================================
    # TYPE CONVERSION
    # =========================================================================

    @staticmethod
    def _unwrap_optional(annotation: Any) -> Tuple[Any, bool]:
        """Return (inner_type, is_optional) for Optional[X] / Union[X, None]."""
        if get_origin(annotation) is Union:
            args = [a for a in get_args(annotation) if a is not type(None)]
            if len(args) < len(get_args(annotation)):
                return (args[0] if len(args) == 1 else annotation), True
        return annotation, False

    @staticmethod
    def enum_type_name(enum_class: Type[Enum]) -> str:
        return re.sub(r"(?<!^)(?=[A-Z])", "_", enum_class.__name__).lower()

    def python_type_to_sql(self, annotation: Any, metadata: Optional[List[Any]] = None) -> str:
        """
        Convert a Python annotation to a PostgreSQL type.

        Args:
            annotation: Field annotation with Optional already unwrapped
            metadata: Pydantic field metadata (MaxLen for VARCHAR(n))
        """
        origin = get_origin(annotation)
        if origin in (dict, Dict, list, List):
            return "JSONB"

        if annotation is str:
            for constraint in metadata or []:
                if isinstance(constraint, MaxLen):
                    return f"VARCHAR({constraint.max_length})"
            return "VARCHAR"

        if isinstance(annotation, type) and issubclass(annotation, Enum):
            enum_name = self.enum_type_name(annotation)
            self.enums[enum_name] = annotation
            return enum_name

        return self.TYPE_MAP.get(annotation, "JSONB")

    # =========================================================================
    # TABLE GENERATION
    # =========================================================================

    def _column(
        self,
        name: str,
        annotation: Any,
        schema_name: str,
        primary_key: List[str],
        serial_columns: List[str],
        metadata: Optional[List[Any]] = None,
        default: Any = None,
        has_factory: bool = False,
    ) -> sql.Composed:
        inner, is_optional = self._unwrap_optional(annotation)
        sql_type = "SERIAL" if name in serial_columns else self.python_type_to_sql(inner, metadata)

        parts: List[sql.Composable] = [sql.Identifier(name), sql.SQL(" ")]
        is_enum = sql_type in self.enums
        if is_enum:
            parts.append(sql.SQL("{}.{}").format(sql.Identifier(schema_name), sql.Identifier(sql_type)))
        else:
            parts.append(sql.SQL(sql_type))

        if not is_optional and name not in primary_key and sql_type != "SERIAL":
            parts.append(sql.SQL(" NOT NULL"))

        if isinstance(default, Enum):
            parts.append(sql.SQL(" DEFAULT {}::{}.{}").format(
                sql.Literal(default.value), sql.Identifier(schema_name), sql.Identifier(sql_type)
            ))
        elif isinstance(default, bool):
            parts.append(sql.SQL(" DEFAULT true" if default else " DEFAULT false"))
        elif isinstance(default, (str, int, float)):
            parts.append(sql.SQL(" DEFAULT {}").format(sql.Literal(default)))
        elif has_factory and sql_type == "TIMESTAMPTZ":
            parts.append(sql.SQL(" DEFAULT NOW()"))
        elif has_factory and sql_type == "JSONB":
            parts.append(sql.SQL(" DEFAULT '{}'::jsonb"))

        return sql.Composed(parts)

    def generate_table(self, model: Type[BaseModel]) -> sql.Composed:
        """
        Generate CREATE TABLE IF NOT EXISTS from a Pydantic model.

        Raises:
            ValueError: Model has no __sql_table__
        """
        meta = self.get_model_metadata(model)
        table_name = meta["table"]
        schema_name = meta["schema"]
        primary_key = meta["primary_key"]

        if not table_name:
            raise ValueError(f"Model {model.__name__} missing __sql_table__ attribute")

        logger.debug(f"Generating table {schema_name}.{table_name} from {model.__name__}")

        columns: List[sql.Composable] = []
        for field_name, field_info in model.model_fields.items():
            if field_info.exclude:
                continue
            default = field_info.default if field_info.default is not ... else None
            columns.append(self._column(
                field_name,
                field_info.annotation,
                schema_name,
                primary_key,
                meta["serial_columns"],
                metadata=field_info.metadata,
                default=default,
                has_factory=field_info.default_factory is not None,
            ))

        for field_name, computed in model.model_computed_fields.items():
            inner = computed.return_type
            default = next(iter(inner)) if isinstance(inner, type) and issubclass(inner, Enum) else None
            columns.append(self._column(
                field_name, inner, schema_name, primary_key, meta["serial_columns"], default=default
            ))

        constraints: List[sql.Composable] = []
        if primary_key:
            constraints.append(sql.SQL("PRIMARY KEY ({})").format(
                sql.SQL(", ").join(sql.Identifier(col) for col in primary_key)
            ))

        for fk_column, fk_reference in meta["foreign_keys"].items():
            match = re.match(r"(\w+)\.(\w+)\((\w+)\)", fk_reference)
            if match:
                ref_schema, ref_table, ref_column = match.groups()
                constraints.append(
                    sql.SQL("FOREIGN KEY ({}) REFERENCES {}.{} ({}) ON DELETE CASCADE").format(
                        sql.Identifier(fk_column),
                        sql.Identifier(ref_schema),
                        sql.Identifier(ref_table),
                        sql.Identifier(ref_column),
                    )
                )

        return sql.SQL("CREATE TABLE IF NOT EXISTS {}.{} ({})").format(
            sql.Identifier(schema_name),
            sql.Identifier(table_name),
            sql.SQL(", ").join(columns + constraints),
        )

    def generate_indexes(self, model: Type[BaseModel]) -> List[sql.Composed]:
        """CREATE INDEX statements from __sql_indexes__ tuples."""
        meta = self.get_model_metadata(model)
        result = []
        for idx_def in meta["indexes"]:
            name, columns = idx_def[0], idx_def[1]
            partial_where = idx_def[2] if len(idx_def) > 2 else None
            result.append(IndexBuilder.btree(
                meta["schema"], meta["table"], columns, name=name, partial_where=partial_where
            ))
        return result

    def generate_enums(self) -> List[sql.Composed]:
        """ENUM DDL for every enum seen by python_type_to_sql so far."""
        statements: List[sql.Composed] = []
        for enum_name, enum_class in self.enums.items():
            if self.destructive:
                statements.extend(EnumBuilder.drop_and_create(self.schema_name, enum_name, enum_class))
            else:
                statements.append(EnumBuilder.create_if_missing(self.schema_name, enum_name, enum_class))
        return statements

    # =========================================================================
    # COMPLETE SCHEMA GENERATION
    # =========================================================================

    def sequencer_models(self) -> List[Type[BaseModel]]:
        """Persisted models in FK-safe creation order."""
        from core.models import ExecutionRecord, OperationError, SequencerLease, SchemaMigration

        return [ExecutionRecord, OperationError, SequencerLease, SchemaMigration]

    def generate_all(self) -> List[sql.Composed]:
        """
        Generate complete DDL for the sequencer schema.

        Tables are generated first so the enum registry is populated, but
        enum statements are emitted ahead of them.
        """
        models = self.sequencer_models()
        self.enums = {}

        tables = [self.generate_table(model) for model in models]
        indexes = [stmt for model in models for stmt in self.generate_indexes(model)]

        statements: List[sql.Composed] = [SchemaUtils.create_schema(self.schema_name)]
        statements.extend(self.generate_enums())
        statements.extend(tables)
        statements.extend(indexes)

        logger.info(f"Generated {len(statements)} DDL statements for schema {self.schema_name}")
        return statements

    async def execute(self, conn, dry_run: bool = False) -> int:
        """
        Execute all DDL statements on an async psycopg connection.

        Returns:
            Number of statements executed (or that would be, on dry run)
        """
        statements = self.generate_all()

        if dry_run:
            for stmt in statements:
                logger.info(f"[DRY RUN] {stmt.as_string(conn)[:100]}...")
            return len(statements)

        async with conn.cursor() as cur:
            for stmt in statements:
                await cur.execute(stmt)

        logger.info(f"Executed {len(statements)} DDL statements")
        return len(statements)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["PydanticToSQL", "SEQUENCER_SCHEMA"]
