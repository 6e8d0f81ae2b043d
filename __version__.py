# ============================================================================
# VERSION - SEQUENCER
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# ============================================================================
"""
Version information for the sequencer.

This is the single source of truth for the application version.
Updated manually for each release.
"""
# Version format: major.minor.patch
__version__ = "0.1.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

BUILD_DATE = "2026-10-17"
EPOCH = 1
CODENAME = "Sequencer"
