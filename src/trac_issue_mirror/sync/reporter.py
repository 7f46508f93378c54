"""Sync outcome formatting.

- ``format_sync_outcome`` -- post-sync summary.
- ``format_dry_run_preview`` -- planned actions grouped by kind.
- ``format_conflict_diff`` -- unified diff of one conflicted node.
- ``outcome_to_json`` -- structured dict for MCP tool output.
"""

from __future__ import annotations

import difflib
from collections import Counter, defaultdict

from .models import Action, ConflictDetail, Node, SyncOutcome, SyncStatus

_STATUS_TEXT = {
    SyncStatus.CLEAN: "already in sync",
    SyncStatus.NEEDS_PUSH: "local changes pushed",
    SyncStatus.NEEDS_PULL: "remote changes pulled",
    SyncStatus.NEEDS_BOTH: "changes pulled and pushed",
    SyncStatus.CONFLICTED: "stopped on conflicts",
}

_ACTION_LABELS = {
    "create_node": "CREATE",
    "update_state": "STATE",
    "update_body": "BODY",
    "update_labels": "LABELS",
    "create_comment": "COMMENT",
}


def format_path(path: tuple[int, ...] | list[int]) -> str:
    """Render a child-index path; the root is ``/``."""
    return "/" + "/".join(str(i) for i in path)


def _describe(action: Action) -> str:
    match action.kind:
        case "create_node":
            parent = f"#{action.parent_id}" if action.parent_id is not None else "(root)"
            return f"{action.title!r} under {parent}"
        case "update_state":
            return f"#{action.node_id} -> {action.close_state.kind.value}"
        case "update_labels":
            return f"#{action.node_id} -> {', '.join(action.labels) or '(none)'}"
        case _:
            return f"#{action.node_id}"


# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_outcome(outcome: SyncOutcome) -> str:
    """Format a sync outcome as human-readable text.

    Args:
        outcome: The finished session's outcome.

    Returns:
        Multi-line formatted string.
    """
    root = f"#{outcome.root_id}" if outcome.root_id is not None else "(new tree)"
    header = f"Sync of ticket tree {root}"
    if outcome.dry_run:
        header += " (DRY RUN)"
    lines = [header, f"Started: {outcome.started_at}"]
    if outcome.completed_at:
        lines.append(f"Completed: {outcome.completed_at}")
    lines.append(f"Status: {outcome.status.value} ({_STATUS_TEXT[outcome.status]})")
    lines.append("")

    if outcome.status == SyncStatus.CONFLICTED:
        lines.append(f"Conflicts ({len(outcome.conflict_paths)}):")
        titles = {tuple(c.path): c.title for c in outcome.conflicts}
        for path in outcome.conflict_paths:
            title = titles.get(tuple(path))
            suffix = f" {title!r}" if title else ""
            lines.append(f"  {format_path(path)}{suffix}")
        lines.append("")
        lines.append(
            "Nothing was written. Edit the document, or re-run with "
            "override=force or override=reset and a preferred side."
        )
        return "\n".join(lines)

    if outcome.actions_executed:
        counts = Counter(a.kind for a in outcome.actions_executed)
        lines.append(
            "Remote changes: "
            + ", ".join(f"{n} {_ACTION_LABELS[k].lower()}" for k, n in sorted(counts.items()))
        )
        for action in outcome.actions_executed:
            lines.append(f"  [{_ACTION_LABELS[action.kind]}] {_describe(action)}")
        lines.append("")

    if outcome.local_written:
        lines.append(f"Working document updated: {outcome.document_path}")
    lines.append(
        "Baseline: " + ("committed" if outcome.baseline_committed else "unchanged")
    )
    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------


def format_dry_run_preview(outcome: SyncOutcome) -> str:
    """Format planned actions grouped by kind.

    Args:
        outcome: A dry-run outcome (``dry_run=True``).

    Returns:
        Multi-line formatted string.
    """
    lines = [
        "DRY RUN -- No changes will be made",
        f"Status: {outcome.status.value}",
        "",
    ]

    groups: dict[str, list[Action]] = defaultdict(list)
    for action in outcome.actions_planned:
        groups[action.kind].append(action)

    for kind, label in _ACTION_LABELS.items():
        if kind not in groups:
            continue
        lines.append(f"[{label}]")
        for action in groups[kind]:
            lines.append(f"  {format_path(action.path)} {_describe(action)}")
        lines.append("")

    if outcome.status == SyncStatus.NEEDS_PULL or outcome.status == SyncStatus.NEEDS_BOTH:
        lines.append("Working document would be updated from the remote.")
        lines.append("")

    if not groups and outcome.status == SyncStatus.CLEAN:
        lines.append("No changes needed.")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Conflict diff
# ------------------------------------------------------------------


def _render_content(node: Node) -> list[str]:
    lines = [
        f"state: {node.close_state.kind.value}",
        f"labels: {', '.join(sorted(node.label_set))}",
        "",
    ]
    lines.extend(node.body.splitlines())
    for comment in node.comments[1:]:
        lines.append("")
        lines.append(f"--- comment ({comment.identity.kind}) ---")
        lines.extend(comment.body.splitlines())
    return [line + "\n" for line in lines]


def format_conflict_diff(conflict: ConflictDetail) -> str:
    """Unified diff between the local and remote content of one node.

    Args:
        conflict: The conflict details.

    Returns:
        Multi-line formatted string.
    """
    lines = [f"Conflict at {format_path(conflict.path)}: {conflict.title}", ""]
    diff = "".join(
        difflib.unified_diff(
            _render_content(conflict.local),
            _render_content(conflict.remote),
            fromfile="local",
            tofile=f"remote: #{conflict.remote.remote_id}",
        )
    )
    lines.append(diff.rstrip() if diff else "(no textual differences)")
    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def outcome_to_json(outcome: SyncOutcome) -> dict:
    """Convert a sync outcome to a structured dict for JSON serialisation.

    Suitable for MCP ``structuredContent`` output.
    """
    result: dict = {
        "root_id": outcome.root_id,
        "document_path": outcome.document_path,
        "status": outcome.status.value,
        "dry_run": outcome.dry_run,
        "started_at": outcome.started_at,
        "completed_at": outcome.completed_at,
        "local_written": outcome.local_written,
        "baseline_committed": outcome.baseline_committed,
        "actions_executed": [a.model_dump(mode="json") for a in outcome.actions_executed],
    }
    if outcome.dry_run:
        result["actions_planned"] = [
            a.model_dump(mode="json") for a in outcome.actions_planned
        ]
    if outcome.status == SyncStatus.CONFLICTED:
        result["conflict_paths"] = [list(p) for p in outcome.conflict_paths]
        result["conflicts"] = [
            {
                "path": list(c.path),
                "title": c.title,
                "diff": format_conflict_diff(c),
            }
            for c in outcome.conflicts
        ]
    return result
