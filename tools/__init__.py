# ============================================================================
# TOOLS
# ============================================================================
# EPOCH: 1 - SEQUENTIAL EXECUTION
# STATUS: Tool - Command line utilities
# PURPOSE: Operator scripts (run with python tools/<name>.py)
# CREATED: 15 OCT 2026
# ============================================================================
