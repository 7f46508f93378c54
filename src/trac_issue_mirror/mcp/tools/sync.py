"""MCP tool handlers for ticket tree sync.

Defines two tools:

- ``ticket_tree_sync`` -- run one sync session (with optional dry-run).
- ``ticket_tree_status`` -- preview what a pulling sync would do.

``source`` is either a root ticket id (``42`` or ``"#42"``), which pulls
and clones the tree on first use, or the absolute path of a working
document.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import mcp.types as types

from ...file_handler import validate_file_path
from ...sync.models import (
    Force,
    LocalSource,
    MergeMode,
    Normal,
    RemoteSource,
    Reset,
    Side,
    SyncOptions,
    SyncSource,
    SyncStatus,
)
from ...sync.reporter import (
    format_conflict_diff,
    format_dry_run_preview,
    format_sync_outcome,
    outcome_to_json,
)
from ...validators import validate_ticket_id
from .registry import ToolSpec

if TYPE_CHECKING:
    from ..lifespan import MirrorContext

logger = logging.getLogger(__name__)

OVERRIDES = ("none", "force", "reset")

_SOURCE_SCHEMA = {
    "type": ["integer", "string"],
    "description": (
        "Root ticket id (e.g. 42 or '#42') or absolute path of a working document"
    ),
}


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def parse_source(raw: Any) -> SyncSource:
    """Turn the ``source`` argument into a sync source.

    Raises:
        ValueError: If it is neither a ticket id nor an existing file.
    """
    if raw is None or raw == "":
        raise ValueError("source is required")
    if isinstance(raw, int) or (
        isinstance(raw, str) and raw.strip().removeprefix("#").isdigit()
    ):
        is_valid, error_msg = validate_ticket_id(raw)
        if not is_valid:
            raise ValueError(error_msg)
        return RemoteSource(id=int(str(raw).strip().removeprefix("#")))
    if not isinstance(raw, str):
        raise ValueError(f"source must be a ticket id or a path, got {raw!r}")
    return LocalSource(path=str(validate_file_path(raw)))


def parse_mode(override: str | None, prefer: str | None) -> MergeMode:
    """Build the merge mode from ``override`` and ``prefer``.

    Raises:
        ValueError: For an unknown override, or force/reset without a side.
    """
    override = (override or "none").lower()
    if override not in OVERRIDES:
        raise ValueError(
            f"Unknown override '{override}': expected one of {', '.join(OVERRIDES)}"
        )
    if override == "none":
        return Normal()
    if prefer is None:
        raise ValueError(f"override={override} needs prefer='local' or 'remote'")
    try:
        side = Side(prefer.lower())
    except ValueError:
        raise ValueError(
            f"Unknown side '{prefer}': expected 'local' or 'remote'"
        ) from None
    return Force(prefer=side) if override == "force" else Reset(prefer=side)


def _result(text: str, structured: dict) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=structured,
    )


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _handle_ticket_tree_sync(
    ctx: MirrorContext, args: dict[str, Any]
) -> types.CallToolResult:
    source = parse_source(args.get("source"))
    options = SyncOptions(
        pull=bool(args.get("pull", False)),
        mode=parse_mode(args.get("override"), args.get("prefer")),
    )
    dry_run = bool(args.get("dry_run", False))

    logger.info(
        "ticket_tree_sync source=%s pull=%s mode=%s dry_run=%s",
        source,
        options.pull,
        options.mode.kind,
        dry_run,
    )
    outcome = await ctx.orchestrator.open(source, options, dry_run=dry_run)

    if outcome.dry_run:
        text = format_dry_run_preview(outcome)
    else:
        text = format_sync_outcome(outcome)
    if outcome.status == SyncStatus.CONFLICTED:
        text += "\n\n" + "\n\n".join(format_conflict_diff(c) for c in outcome.conflicts)

    return _result(text, outcome_to_json(outcome))


async def _handle_ticket_tree_status(
    ctx: MirrorContext, args: dict[str, Any]
) -> types.CallToolResult:
    source = parse_source(args.get("source"))
    outcome = await ctx.orchestrator.open(
        source, SyncOptions(pull=True), dry_run=True
    )

    lines = [
        f"Ticket tree #{outcome.root_id}" if outcome.root_id else "New ticket tree",
        f"  Document:  {outcome.document_path}",
        f"  Status:    {outcome.status.value}",
        f"  Pending remote changes: {len(outcome.actions_planned)}",
        f"  Conflicts: {len(outcome.conflict_paths)}",
    ]
    if outcome.status == SyncStatus.CONFLICTED:
        lines.append("")
        lines.extend(format_conflict_diff(c) for c in outcome.conflicts)

    return _result("\n".join(lines), outcome_to_json(outcome))


# ---------------------------------------------------------------------------
# Tool specs
# ---------------------------------------------------------------------------

SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=types.Tool(
            name="ticket_tree_sync",
            description=(
                "Synchronize a locally mirrored ticket tree (a root ticket and "
                "all its sub-tickets) with Trac. Local edits are pushed, remote "
                "edits pulled; nodes changed on both sides are reported as "
                "conflicts unless override is force or reset."
            ),
            annotations=types.ToolAnnotations(
                readOnlyHint=False,
                destructiveHint=False,
                idempotentHint=True,
                openWorldHint=True,
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "source": _SOURCE_SCHEMA,
                    "pull": {
                        "type": "boolean",
                        "default": False,
                        "description": (
                            "Fetch the remote tree and merge its changes "
                            "(always on when source is a ticket id)"
                        ),
                    },
                    "override": {
                        "type": "string",
                        "enum": list(OVERRIDES),
                        "default": "none",
                        "description": (
                            "none: stop on conflicts; force: take the preferred "
                            "side at each conflicted ticket; reset: adopt the "
                            "preferred side's whole tree"
                        ),
                    },
                    "prefer": {
                        "type": "string",
                        "enum": [s.value for s in Side],
                        "description": "Side that wins for force/reset",
                    },
                    "dry_run": {
                        "type": "boolean",
                        "default": False,
                        "description": "Preview changes without applying them",
                    },
                },
                "required": ["source"],
            },
        ),
        permissions=frozenset({"TICKET_VIEW", "TICKET_MODIFY"}),
        handler=_handle_ticket_tree_sync,
    ),
    ToolSpec(
        tool=types.Tool(
            name="ticket_tree_status",
            description=(
                "Show how a mirrored ticket tree differs from Trac: status, "
                "pending remote changes and conflicts. Writes nothing."
            ),
            annotations=types.ToolAnnotations(
                readOnlyHint=True,
                destructiveHint=False,
                idempotentHint=True,
                openWorldHint=True,
            ),
            inputSchema={
                "type": "object",
                "properties": {"source": _SOURCE_SCHEMA},
                "required": ["source"],
            },
        ),
        permissions=frozenset({"TICKET_VIEW"}),
        handler=_handle_ticket_tree_status,
    ),
]
