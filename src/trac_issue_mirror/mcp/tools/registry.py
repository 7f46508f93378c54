"""Tool registry filtered by Trac permissions.

A ``ToolSpec`` names the Trac permissions its tool needs. The registry
keeps only the specs the operator's permissions file allows and turns
handler exceptions into error results.
"""

from __future__ import annotations

import logging
import re
import xmlrpc.client
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import mcp.types as types

from ...sync.errors import SyncError

if TYPE_CHECKING:
    from ..lifespan import MirrorContext

logger = logging.getLogger(__name__)

_PERMISSION = re.compile(r"^[A-Z]+(_[A-Z]+)*$")


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """One MCP tool: definition, required permissions and handler.

    An empty ``permissions`` set means the tool is always offered.
    """

    tool: types.Tool
    permissions: frozenset[str]
    handler: Callable[[MirrorContext, dict], Awaitable[types.CallToolResult]]


class ToolRegistry:
    """Specs whose permissions are all in *allowed_permissions* (None allows all)."""

    def __init__(
        self,
        specs: list[ToolSpec],
        allowed_permissions: frozenset[str] | None = None,
    ):
        self._specs = {
            spec.tool.name: spec
            for spec in specs
            if allowed_permissions is None or spec.permissions <= allowed_permissions
        }

    def list_tools(self) -> list[types.Tool]:
        return [spec.tool for spec in self._specs.values()]

    def tool_count(self) -> int:
        return len(self._specs)

    async def call_tool(
        self,
        name: str,
        arguments: dict | None,
        context: MirrorContext,
    ) -> types.CallToolResult:
        """Run the handler for *name*, mapping failures to error results.

        Raises:
            ValueError: If *name* is unknown or was filtered out.
        """
        from .errors import (
            build_error_response,
            translate_sync_error,
            translate_xmlrpc_error,
        )

        spec = self._specs.get(name)
        if spec is None:
            raise ValueError(f"Unknown tool: {name}")
        try:
            return await spec.handler(context, arguments or {})
        except SyncError as e:
            logger.warning("Sync failed in %s: %s", name, e)
            return translate_sync_error(e)
        except xmlrpc.client.Fault as e:
            logger.warning("XML-RPC fault in %s: %s", name, e.faultString)
            return translate_xmlrpc_error(e)
        except ValueError as e:
            return build_error_response(
                "validation_error", str(e), "Check parameter values and retry."
            )
        except Exception as e:
            logger.exception("Unexpected error in tool %s", name)
            return build_error_response(
                "server_error", str(e), "Contact Trac administrator or retry later."
            )


def load_permissions_file(path: str | Path) -> frozenset[str]:
    """Read Trac permission names, one per line; ``#`` starts a comment.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: On a malformed name, or if no permission is listed.
    """
    path = Path(path)
    permissions: set[str] = set()
    for line_num, line in enumerate(path.read_text().splitlines(), 1):
        name = line.split("#", 1)[0].strip()
        if not name:
            continue
        if not _PERMISSION.match(name):
            raise ValueError(
                f"Invalid permission '{name}' at line {line_num} in {path}. "
                "Expected UPPER_SNAKE_CASE (e.g., TICKET_VIEW)."
            )
        permissions.add(name)
    if not permissions:
        raise ValueError(f"No permissions found in {path}.")
    return frozenset(permissions)
