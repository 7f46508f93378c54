"""Tree-wide resolution of local, baseline and remote copies.

``resolve_tree`` walks the local and remote trees together, matching
children by remote id, classifies every matched node with
``comparator.classify`` and builds the resolved tree on a deep clone of
the local tree. What happens at a conflicted node is up to a
``ConflictPolicy``:

- ``FailOnConflict``: record the conflict path and leave content alone.
- ``PreferSide``: take the preferred side's content, as if the
  comparator had auto-resolved in its favour.

``reset_tree`` implements the Reset override: the preferred whole tree
is adopted verbatim without any comparison.

The ``policy_for()`` factory maps a ``MergeMode`` to a policy.
"""

from __future__ import annotations

import logging
from typing import Protocol

from .comparator import classify
from .models import (
    Force,
    MergeMode,
    Node,
    NodePath,
    Reset,
    ResolutionKind,
    Side,
    TreeResolution,
    auto_resolved,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Conflict policies
# ---------------------------------------------------------------------------


class ConflictPolicy(Protocol):
    """Decides what happens at a node the comparator could not resolve."""

    def decide(self, path: NodePath, local: Node, remote: Node) -> Side | None:
        """Return the side whose content wins, or None to report a conflict."""
        ...  # pragma: no cover


class FailOnConflict:
    """Report every conflict to the caller."""

    def decide(self, path: NodePath, local: Node, remote: Node) -> Side | None:
        return None


class PreferSide:
    """Always take one side's content at conflicted nodes."""

    def __init__(self, prefer: Side):
        self.prefer = prefer

    def decide(self, path: NodePath, local: Node, remote: Node) -> Side | None:
        logger.info(
            "Conflict at %s (%r) forced to %s", list(path), local.title, self.prefer.value
        )
        return self.prefer


def policy_for(mode: MergeMode) -> ConflictPolicy:
    """Map a merge mode to its conflict policy.

    Raises:
        ValueError: For Reset, which bypasses comparison entirely.
    """
    match mode:
        case Force(prefer=prefer):
            return PreferSide(prefer)
        case Reset():
            raise ValueError("Reset does not compare trees; use reset_tree()")
        case _:
            return FailOnConflict()


# ---------------------------------------------------------------------------
# Content transfer
# ---------------------------------------------------------------------------


def apply_remote_content(target: Node, source: Node) -> None:
    """Overwrite *target*'s content fields with *source*'s.

    Content is close state, labels, comments (body first) and the
    timestamp. Identity, title, children and blocks stay as they are.
    """
    target.close_state = source.close_state
    target.labels = list(source.labels)
    target.comments = list(source.comments)
    target.last_contents_change = source.last_contents_change


# ---------------------------------------------------------------------------
# Walk
# ---------------------------------------------------------------------------


class _TreeWalk:
    def __init__(self, policy: ConflictPolicy):
        self.policy = policy
        self.conflict_paths: list[NodePath] = []
        self.local_needs_update = False
        self.remote_needs_update = False

    def visit(
        self,
        resolved: Node,
        consensus: Node | None,
        remote: Node,
        path: NodePath,
    ) -> None:
        # resolved is still local's content here; it is only rewritten below
        resolution = classify(resolved, consensus, remote)

        if resolution.kind == ResolutionKind.CONFLICT:
            winner = self.policy.decide(path, resolved, remote)
            if winner is None:
                logger.info("Conflict at %s (%r)", list(path), resolved.title)
                self.conflict_paths.append(path)
            else:
                resolution = auto_resolved(winner)
        else:
            logger.debug("%s at %s (%r)", resolution.kind.value, list(path), resolved.title)

        if resolution.takes_local:
            self.remote_needs_update = True
        elif resolution.takes_remote:
            apply_remote_content(resolved, remote)
            self.local_needs_update = True

        self._visit_children(resolved, consensus, remote, path)

    def _visit_children(
        self,
        resolved: Node,
        consensus: Node | None,
        remote: Node,
        path: NodePath,
    ) -> None:
        local_children = list(resolved.children)
        matched_ids: set[int] = set()

        for remote_child in remote.children:
            remote_id = remote_child.remote_id
            index = next(
                (
                    i
                    for i, child in enumerate(local_children)
                    if child.remote_id == remote_id
                ),
                None,
            )
            if index is None:
                resolved.children.append(remote_child.clone())
                self.local_needs_update = True
                logger.debug("New remote child #%s under %s", remote_id, list(path))
                continue

            matched_ids.add(remote_id)
            consensus_child = (
                consensus.child_by_id(remote_id) if consensus is not None else None
            )
            self.visit(
                local_children[index], consensus_child, remote_child, (*path, index)
            )

        for child in local_children:
            if not child.is_linked:
                self.remote_needs_update = True
            elif child.remote_id not in matched_ids:
                # deletion is not propagated; the local copy is kept
                logger.debug(
                    "Child #%s under %s is missing remotely, keeping local copy",
                    child.remote_id,
                    list(path),
                )


def resolve_tree(
    local: Node,
    consensus: Node | None,
    remote: Node,
    policy: ConflictPolicy | None = None,
) -> TreeResolution:
    """Resolve a local tree against its baseline and a freshly fetched remote.

    Args:
        local: Working-document tree. Not mutated.
        consensus: Last-synced baseline, or None on the first sync.
        remote: Fetched remote tree. Not mutated.
        policy: What to do at conflicted nodes; defaults to reporting them.

    Returns:
        ``TreeResolution`` with the resolved clone, conflict paths and the
        tree-wide push/pull flags.

    Raises:
        ValueError: If the two roots are not the same remote node.
    """
    if local.remote_id is None or local.remote_id != remote.remote_id:
        raise ValueError(
            f"Cannot resolve local root {local.remote_id} against remote root "
            f"{remote.remote_id}"
        )

    walk = _TreeWalk(policy or FailOnConflict())
    resolved = local.clone()
    walk.visit(resolved, consensus, remote, ())

    return TreeResolution(
        tree=resolved,
        conflict_paths=walk.conflict_paths,
        local_needs_update=walk.local_needs_update,
        remote_needs_update=walk.remote_needs_update,
    )


def reset_tree(local: Node, remote: Node | None, prefer: Side) -> TreeResolution:
    """Adopt *prefer*'s whole tree verbatim, without comparing.

    Raises:
        ValueError: If the remote side is preferred but no remote tree is given.
    """
    if prefer == Side.LOCAL:
        return TreeResolution(tree=local.clone(), remote_needs_update=True)
    if remote is None:
        raise ValueError("Reset to remote needs a fetched remote tree")
    return TreeResolution(tree=remote.clone(), local_needs_update=True)
