"""Turn local-only divergence into depth-batched remote mutations.

Two passes, both returning ``ActionBatches`` where the list index is the
depth of the node the action touches:

- ``plan_creates``: one ``CreateNode`` per pending node whose parent is
  already linked. Children of a pending node wait for a later call, once
  their parent has a real id. A pending root yields exactly one batch
  with the root create and nothing else.
- ``plan_updates``: for every linked node, compare against the node with
  the same id in a reference tree (the fetched remote, or the baseline)
  and emit state/body/label updates; pending comments the user wrote
  become ``CreateComment`` regardless of the reference.
"""

from __future__ import annotations

import logging

from ..validators import validate_summary
from .errors import PlanningError
from .models import (
    Action,
    ActionBatches,
    CreateComment,
    CreateNode,
    Node,
    NodePath,
    Pending,
    UpdateNodeBody,
    UpdateNodeLabels,
    UpdateNodeState,
)

logger = logging.getLogger(__name__)


def _create_action(node: Node, path: NodePath, parent_id: int | None) -> CreateNode:
    is_valid, error_msg = validate_summary(node.title)
    if not is_valid:
        raise PlanningError(f"Cannot create node at path {list(path)}: {error_msg}")
    return CreateNode(
        path=path,
        parent_id=parent_id,
        title=node.title,
        body=node.body,
        close_state=node.close_state,
        labels=list(node.labels),
    )


def _add(batches: ActionBatches, depth: int, action: Action) -> None:
    while len(batches) <= depth:
        batches.append([])
    batches[depth].append(action)


def plan_creates(tree: Node) -> ActionBatches:
    """Plan creation of every pending node that can be created now.

    Raises:
        PlanningError: If a node to create has no usable title.
    """
    if not tree.is_linked:
        return [[_create_action(tree, (), None)]]

    batches: ActionBatches = []

    def _walk(node: Node, path: NodePath) -> None:
        for index, child in enumerate(node.children):
            child_path = (*path, index)
            if child.is_linked:
                _walk(child, child_path)
            else:
                _add(
                    batches,
                    len(child_path),
                    _create_action(child, child_path, node.remote_id),
                )

    _walk(tree, ())
    return batches


def plan_updates(tree: Node, reference: Node | None) -> ActionBatches:
    """Plan updates that bring the remote in line with *tree*.

    Args:
        tree: The resolved tree, with every node already created.
        reference: What the remote is known to hold. Nodes absent from it
            get no field updates.

    Returns:
        Depth-indexed batches of update and comment actions.
    """
    known: dict[int, Node] = {}
    if reference is not None:
        known = {
            node.remote_id: node for _, node in reference.walk() if node.is_linked
        }

    batches: ActionBatches = []
    for path, node in tree.walk():
        node_id = node.remote_id
        if node_id is None:
            continue
        depth = len(path)

        ref = known.get(node_id)
        if ref is not None:
            if node.close_state != ref.close_state:
                _add(batches, depth, UpdateNodeState(
                    path=path, node_id=node_id, close_state=node.close_state
                ))
            if node.body != ref.body:
                if node.owned:
                    _add(batches, depth, UpdateNodeBody(
                        path=path, node_id=node_id, body=node.body
                    ))
                else:
                    logger.warning(
                        "Body of #%d changed locally but the ticket is not yours; not pushing",
                        node_id,
                    )
            if node.label_set != ref.label_set:
                _add(batches, depth, UpdateNodeLabels(
                    path=path, node_id=node_id, labels=sorted(node.label_set)
                ))

        for index, comment in enumerate(node.comments[1:], start=1):
            if not isinstance(comment.identity, Pending):
                continue
            if not comment.body.strip():
                continue
            _add(batches, depth, CreateComment(
                path=path, node_id=node_id, comment_index=index, body=comment.body
            ))

    return batches


def count_actions(batches: ActionBatches) -> int:
    return sum(len(batch) for batch in batches)
