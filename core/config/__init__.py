# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 12 OCT 2026
# ============================================================================
"""
Configuration Module

Provides the SequencerConfig passed to the orchestrator.
"""

from core.config.defaults import (
    LockDefaults,
    QueueDefaults,
    SequencerConfig,
    get_config,
    reset_config,
)

__all__ = [
    "LockDefaults",
    "QueueDefaults",
    "SequencerConfig",
    "get_config",
    "reset_config",
]
