"""MCP tool handlers for the ticket tree mirror.

This package wraps the sync orchestrator in async tool handlers with
structured error responses.
"""

from .errors import build_error_response
from .registry import ToolRegistry, ToolSpec, load_permissions_file
from .sync import SYNC_SPECS

ALL_SPECS: list[ToolSpec] = list(SYNC_SPECS)

__all__ = [
    "build_error_response",
    # Registry
    "ToolSpec",
    "ToolRegistry",
    "load_permissions_file",
    # Spec lists
    "ALL_SPECS",
    "SYNC_SPECS",
]
