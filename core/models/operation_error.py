# ============================================================================
# OPERATION ERROR MODEL
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core model - Failure details for an execution record
# PURPOSE: Persist exception class, message, traceback and source location
# LAST_REVIEWED: 14 OCT 2026
# EXPORTS: OperationError
# DEPENDENCIES: pydantic
# ============================================================================
"""
Operation Error Model

Written alongside a Failed ExecutionRecord when record_errors is on.
The record itself only knows *that* it failed; this row says why.
"""

import traceback
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, Field

from core.contracts import utcnow


class OperationError(BaseModel):
    """
    Failure details for one execution attempt.

    Maps to: sequencer.operation_errors table
    """

    __sql_table__: ClassVar[str] = "operation_errors"
    __sql_schema__: ClassVar[str] = "sequencer"
    __sql_primary_key__: ClassVar[List[str]] = ["id"]
    __sql_serial_columns__: ClassVar[List[str]] = ["id"]
    __sql_foreign_keys__: ClassVar[Dict[str, str]] = {
        "operation_id": "sequencer.operations(id)"
    }
    __sql_indexes__: ClassVar[List[tuple]] = [
        ("idx_seq_operation_errors_operation", ["operation_id"]),
    ]

    id: Optional[int] = None
    operation_id: int = Field(..., description="FK to sequencer.operations.id")
    exception: str = Field(..., max_length=255, description="Exception class name")
    message: Optional[str] = None
    trace: Optional[str] = None
    context: Dict[str, Any] = Field(
        default_factory=dict,
        description="File, line and operation details (JSONB)"
    )
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_exception(
        cls,
        operation_id: int,
        error: BaseException,
        context: Optional[Dict[str, Any]] = None,
    ) -> "OperationError":
        """
        Build an error row from a raised exception.

        The innermost traceback frame supplies file/line context.
        """
        details: Dict[str, Any] = dict(context or {})
        frames = traceback.extract_tb(error.__traceback__) if error.__traceback__ else []
        if frames:
            last = frames[-1]
            details.setdefault("file", last.filename)
            details.setdefault("line", last.lineno)
            details.setdefault("function", last.name)

        return cls(
            operation_id=operation_id,
            exception=type(error).__name__[:255],
            message=str(error),
            trace="".join(traceback.format_exception(type(error), error, error.__traceback__)),
            context=details,
        )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["OperationError"]
