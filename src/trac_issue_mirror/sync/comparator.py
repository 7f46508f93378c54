"""Per-node divergence classification.

Only a node's own content is compared: close state, body, the remaining
comments in order, and the label set. Children and freeform blocks never
take part; the resolver walks children itself.
"""

from __future__ import annotations

import logging

from .models import (
    CONFLICT,
    LOCAL_ONLY,
    NO_CHANGE,
    REMOTE_ONLY,
    Node,
    Resolution,
    Side,
    auto_resolved,
)

logger = logging.getLogger(__name__)


def node_content_eq(a: Node, b: Node) -> bool:
    """True when two copies of a node carry the same content."""
    if a.close_state != b.close_state:
        return False
    if a.body != b.body:
        return False
    rest_a = [(c.identity, c.body) for c in a.comments[1:]]
    rest_b = [(c.identity, c.body) for c in b.comments[1:]]
    if rest_a != rest_b:
        return False
    return a.label_set == b.label_set


def _timestamp_winner(local: Node, remote: Node) -> Side | None:
    """Side with the later change time, or None when not comparable."""
    if not (local.is_linked and remote.is_linked):
        return None
    lts, rts = local.last_contents_change, remote.last_contents_change
    if lts is None or rts is None or lts == rts:
        return None
    return Side.LOCAL if lts > rts else Side.REMOTE


def classify(local: Node, consensus: Node | None, remote: Node) -> Resolution:
    """Classify one node's divergence from its local, baseline and remote copies.

    Args:
        local: The working-document copy.
        consensus: The baseline copy, or None on the first sync of this node.
        remote: The freshly fetched copy.

    Returns:
        NO_CHANGE, LOCAL_ONLY, REMOTE_ONLY, ``auto_resolved(winner)`` or
        CONFLICT.
    """
    if consensus is None:
        if node_content_eq(local, remote):
            return NO_CHANGE
        winner = _timestamp_winner(local, remote)
        return auto_resolved(winner) if winner else CONFLICT

    local_changed = not node_content_eq(local, consensus)
    remote_changed = not node_content_eq(remote, consensus)

    match (local_changed, remote_changed):
        case (False, False):
            return NO_CHANGE
        case (True, False):
            return LOCAL_ONLY
        case (False, True):
            return REMOTE_ONLY

    winner = _timestamp_winner(local, remote)
    if winner is None:
        logger.debug(
            "Both sides changed %r with no usable timestamps", local.title
        )
        return CONFLICT
    return auto_resolved(winner)
