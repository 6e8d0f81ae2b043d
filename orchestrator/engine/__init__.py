# ============================================================================
# ORCHESTRATOR ENGINE
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Engine components
# PURPOSE: Task ordering and dependency satisfaction
# CREATED: 14 OCT 2026
# ============================================================================
"""
Orchestrator Engine Components

- resolver: ready-set topological sort and persisted dependency checks
"""

from orchestrator.engine.resolver import (
    DependencyGraph,
    DependencyResolver,
)

__all__ = [
    "DependencyGraph",
    "DependencyResolver",
]
