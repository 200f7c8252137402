"""
Centralized constants for workgraph.

This module contains the magic numbers and configuration values used by the
graph engine. Organizing them here makes it easier to understand, modify, and
maintain the system's behavior.
"""

from pathlib import Path

# =============================================================================
# PATHS
# =============================================================================

WORKGRAPH_CONFIG_DIR = Path.home() / ".config" / "workgraph"
DEFAULT_DB_FILENAME = "workgraph.db"
DEFAULT_CONFIG_FILENAME = "config.yaml"

# =============================================================================
# ITEM DEFAULTS
# =============================================================================

DEFAULT_PRIORITY = 2  # 1=high, 2=medium, 3=low
MIN_PRIORITY = 0
MAX_PRIORITY = 4

DEFAULT_PROJECT = "default"

# Prefix convention for item ids, followed by 6 hex chars (e.g. "ts-a1b2c3")
ITEM_ID_PREFIXES = {
    "task": "ts-",
    "epic": "ep-",
}
ITEM_ID_HEX_LENGTH = 6

# =============================================================================
# GRAPH TRAVERSAL
# =============================================================================

# Ceiling on walk depth for impact, chain, and ancestor traversals. Guards
# against corrupted cyclic data in the edge or parent tables.
MAX_TRAVERSAL_DEPTH = 100

# =============================================================================
# QUERY LIMITS
# =============================================================================

DEFAULT_LIST_LIMIT = 50
DEFAULT_LOG_LIMIT = 100
DEFAULT_HISTORY_LIMIT = 50

# In-progress items untouched for longer than this are reported as stale
STALE_AFTER_MINUTES = 5

# =============================================================================
# MERGE & AUDIT LOG TEXT
# =============================================================================

MERGE_DESCRIPTION_SEPARATOR = "\n\n---\nMerged from {source_id}:\n"
MERGE_LOG_MESSAGE = "Merged from {source_id}: {title}"
REVERT_LOG_MESSAGE = "Reverted to open: dependency added on {depends_on} (not yet done)"
AUTO_COMPLETE_LOG_MESSAGE = "Auto-completed (all children done)"
AUTO_COMPLETE_RESULTS = "All {total} child tasks completed ({done} done)"

# =============================================================================
# ENVIRONMENT VARIABLES
# =============================================================================

ENV_VAR_DEFINITIONS = {
    "WORKGRAPH_DB": {
        "description": "Path to the workgraph SQLite database",
        "default": None,
        "valid_values": None,
    },
    "WORKGRAPH_CONFIG": {
        "description": "Path to the YAML project config file",
        "default": None,
        "valid_values": None,
    },
    "WORKGRAPH_TEST_DB": {
        "description": "Database path used by the test suite (overrides WORKGRAPH_DB)",
        "default": None,
        "valid_values": None,
    },
    "WORKGRAPH_MAX_DEPTH": {
        "description": "Override for the graph traversal depth ceiling",
        "default": None,
        "valid_values": None,
    },
    "WORKGRAPH_LOG_LEVEL": {
        "description": "Log level for workgraph loggers",
        "default": "WARNING",
        "valid_values": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    },
    "AGENT_ID": {
        "description": "Identity of the agent claiming in-progress items",
        "default": None,
        "valid_values": None,
    },
    "AGENT_TYPE": {
        "description": "Kind of agent, e.g. primary or subagent",
        "default": None,
        "valid_values": None,
    },
}
