"""Dispatch of planned remote mutations.

Batches run depth after depth; the actions inside one batch run
concurrently, except that actions on the same ticket run one after the
other (Trac rejects concurrent updates to one ticket). Ids returned by
creates are written into the tree as soon as each action completes, so
they survive a later failure.

On the first failure no further request of that depth is sent, deeper
depths are skipped and ``PartialActionFailure`` reports what completed.
"""

from __future__ import annotations

import logging

from ..core.async_utils import (
    RequestAborted,
    first_failure,
    gather_until_failure,
    sibling_failed,
)
from .errors import PartialActionFailure
from .models import (
    Action,
    ActionBatches,
    CreateComment,
    CreateNode,
    Linked,
    Node,
    UpdateNodeBody,
    UpdateNodeLabels,
    UpdateNodeState,
)
from .remote import RemoteClient

logger = logging.getLogger(__name__)


class _ActionFailed(Exception):
    def __init__(self, action: Action, cause: BaseException):
        super().__init__(str(cause))
        self.action = action
        self.cause = cause


async def execute_action(remote: RemoteClient, action: Action) -> int | None:
    """Send one action to the remote; returns the new id for creates."""
    match action:
        case CreateNode():
            return await remote.create_node(
                action.parent_id,
                action.title,
                action.body,
                action.close_state,
                action.labels,
            )
        case UpdateNodeState():
            await remote.update_node_state(action.node_id, action.close_state)
        case UpdateNodeBody():
            await remote.update_node_body(action.node_id, action.body)
        case UpdateNodeLabels():
            await remote.update_node_labels(action.node_id, action.labels)
        case CreateComment():
            return await remote.add_comment(action.node_id, action.body)
    return None


def apply_result(tree: Node, action: Action, result: int | None) -> None:
    """Record an id returned by the remote in the tree."""
    match action:
        case CreateNode():
            tree.get_child(action.path).link(result)
        case CreateComment():
            node = tree.get_child(action.path)
            comment = node.comments[action.comment_index]
            node.comments[action.comment_index] = comment.model_copy(
                update={"identity": Linked(id=result)}
            )


def _target_key(action: Action) -> tuple:
    if isinstance(action, CreateNode):
        return ("path", action.path)
    return ("node", action.node_id)


async def dispatch_batches(
    remote: RemoteClient, batches: ActionBatches, tree: Node
) -> list[Action]:
    """Run every batch against the remote, writing returned ids into *tree*.

    Returns:
        The completed actions, in completion order.

    Raises:
        PartialActionFailure: On the first failing action.
    """
    completed: list[Action] = []

    async def _run_group(actions: list[Action]) -> None:
        for action in actions:
            if sibling_failed():
                return
            try:
                result = await execute_action(remote, action)
            except RequestAborted:
                raise
            except Exception as e:
                raise _ActionFailed(action, e) from e
            apply_result(tree, action, result)
            completed.append(action)
            logger.debug("Completed %s at %s", action.kind, list(action.path))

    for depth, batch in enumerate(batches):
        if not batch:
            continue

        groups: dict[tuple, list[Action]] = {}
        for action in batch:
            groups.setdefault(_target_key(action), []).append(action)

        logger.info(
            "Dispatching depth %d: %d action(s) on %d target(s)",
            depth,
            len(batch),
            len(groups),
        )
        results = await gather_until_failure(
            [_run_group(actions) for actions in groups.values()]
        )
        failure = first_failure(results)
        if failure is None:
            continue

        if isinstance(failure, _ActionFailed):
            logger.error(
                "%s at %s failed: %s", failure.action.kind, list(failure.action.path), failure.cause
            )
            raise PartialActionFailure(
                completed, failure.action, depth, failure.cause
            ) from failure.cause
        raise failure

    return completed
