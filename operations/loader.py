# ============================================================================
# OPERATION LOADER
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Lazy operation loading
# PURPOSE: Import operation files on demand and cache the instance
# CREATED: 13 OCT 2026
# ============================================================================
"""
Operation Loader

OperationHandle is the payload of an operation Task. Nothing is
imported until load() is called - discovery of a directory with
hundreds of operations stays cheap, and a broken operation file only
fails the run that actually needs it.

A file resolves to an operation by, in order:
    1. A module attribute named `operation` (instance or Operation subclass)
    2. The single concrete Operation subclass defined in the module
"""

import importlib.util
import inspect
import logging
import sys
from pathlib import Path
from typing import Optional, Type, Union

from core.errors import OperationLoadError
from operations.base import Operation
from operations.registry import get_operation_or_raise

logger = logging.getLogger(__name__)

_MODULE_PREFIX = "sequencer_operations"


def _instantiate(identity: str, candidate: Union[Operation, Type[Operation]]) -> Operation:
    if isinstance(candidate, Operation):
        return candidate
    if isinstance(candidate, type) and issubclass(candidate, Operation):
        return candidate()
    raise OperationLoadError(identity, f"'operation' is {type(candidate).__name__}, not an Operation")


class OperationHandle:
    """Lazy, caching loader for one operation."""

    def __init__(
        self,
        identity: str,
        path: Optional[Union[str, Path]] = None,
        operation_class: Optional[Type[Operation]] = None,
    ):
        """
        Args:
            identity: Timestamped name of the operation
            path: Operation file (file-based operations)
            operation_class: Class (registered operations); looked up by identity if neither is given
        """
        self.identity = identity
        self.path = Path(path) if path is not None else None
        self.operation_class = operation_class
        self._operation: Optional[Operation] = None

    @property
    def loaded(self) -> bool:
        return self._operation is not None

    def load(self) -> Operation:
        """
        Load (once) and return the operation instance.

        Raises:
            OperationLoadError: file missing, import error, or no operation found
        """
        if self._operation is None:
            if self.path is not None:
                self._operation = self._load_file()
            elif self.operation_class is not None:
                self._operation = _instantiate(self.identity, self.operation_class)
            else:
                self._operation = _instantiate(self.identity, get_operation_or_raise(self.identity))
            logger.debug(f"Loaded operation {self.identity}: {self._operation!r}")
        return self._operation

    def _load_file(self) -> Operation:
        path = self.path
        if not path.is_file():
            raise OperationLoadError(self.identity, "file not found", path=str(path))

        module_name = f"{_MODULE_PREFIX}.{self.identity}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise OperationLoadError(self.identity, "not an importable Python file", path=str(path))

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(module_name, None)
            raise OperationLoadError(
                self.identity, f"import failed: {type(e).__name__}: {e}", path=str(path)
            ) from e

        candidate = getattr(module, "operation", None)
        if candidate is not None:
            return _instantiate(self.identity, candidate)

        classes = [
            obj for obj in vars(module).values()
            if inspect.isclass(obj)
            and issubclass(obj, Operation)
            and obj.__module__ == module_name
            and not inspect.isabstract(obj)
        ]
        if len(classes) != 1:
            raise OperationLoadError(
                self.identity,
                f"expected exactly one Operation subclass, found {len(classes)}",
                path=str(path),
            )
        return classes[0]()

    def __repr__(self) -> str:
        source = str(self.path) if self.path else "registry"
        return f"OperationHandle({self.identity!r}, {source})"


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["OperationHandle"]
