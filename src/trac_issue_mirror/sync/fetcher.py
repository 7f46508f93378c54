"""Wavefront fetch of a remote ticket tree.

The root's fields, comments and children arrive in one round. Every
following round fetches the comments and grandchildren of the whole
current frontier concurrently; the frontier for the next round is built
from the returned grandchildren. Rounds are strictly sequential because
child ids are only known once the parent round returns.

Any failure aborts the whole fetch. Requests of the failed round that
have not been sent yet are dropped and no partial tree is returned.
"""

from __future__ import annotations

import logging

from ..core.async_utils import first_failure, gather_until_failure
from .errors import FetchError
from .models import Comment, IsBody, Linked, Node
from .remote import ChildPayload, NodeFields, RemoteClient, RemoteComment

logger = logging.getLogger(__name__)


def build_node(fields: NodeFields, comments: list[RemoteComment]) -> Node:
    """Assemble a childless ``Node`` from remote fields and comments."""
    return Node(
        identity=Linked(id=fields.id),
        title=fields.title,
        close_state=fields.close_state,
        owned=fields.owned,
        labels=list(fields.labels),
        comments=[
            Comment(identity=IsBody(), body=fields.description, owned=fields.owned),
            *(
                Comment(identity=Linked(id=c.id), body=c.body, owned=c.owned)
                for c in comments
            ),
        ],
        last_contents_change=fields.changed_at,
    )


class TreeFetcher:
    """Materializes a full remote tree rooted at a linked id."""

    def __init__(self, remote: RemoteClient):
        self._remote = remote

    async def fetch(self, root_id: int) -> Node:
        """Fetch the tree under *root_id*.

        Raises:
            FetchError: If any remote call fails. Nothing partial is returned.
        """
        try:
            fetched = await self._remote.fetch_node(root_id)
        except FetchError:
            raise
        except Exception as e:
            raise FetchError(f"Failed to fetch ticket #{root_id}: {e}", root_id) from e

        root = build_node(fetched.fields, fetched.comments)
        seen = {root_id}
        frontier = self._attach(root, fetched.children, seen)
        depth = 1

        while frontier:
            logger.debug(
                "Fetching depth %d under #%d: %d node(s)", depth, root_id, len(frontier)
            )
            results = await gather_until_failure(
                [self._remote.fetch_child(node.remote_id) for node in frontier]
            )
            failure = first_failure(results)
            if failure is not None:
                failed_id = next(
                    node.remote_id
                    for node, result in zip(frontier, results)
                    if result is failure
                )
                raise FetchError(
                    f"Failed to fetch ticket #{failed_id} at depth {depth}: {failure}",
                    failed_id,
                ) from failure

            next_frontier: list[Node] = []
            for node, payload in zip(frontier, results):
                assert isinstance(payload, ChildPayload)
                node.comments.extend(
                    Comment(identity=Linked(id=c.id), body=c.body, owned=c.owned)
                    for c in payload.comments
                )
                next_frontier.extend(self._attach(node, payload.children, seen))
            frontier = next_frontier
            depth += 1

        logger.info(
            "Fetched ticket tree #%d: %d node(s), depth %d",
            root_id,
            sum(1 for _ in root.walk()),
            depth,
        )
        return root

    @staticmethod
    def _attach(
        parent: Node, children: list[NodeFields], seen: set[int]
    ) -> list[Node]:
        attached = []
        for fields in children:
            if fields.id in seen:
                logger.warning(
                    "Ticket #%d appears twice in the tree, keeping the first", fields.id
                )
                continue
            seen.add(fields.id)
            # duplicate-closed nodes never enter the tree
            if fields.close_state.duplicate_of is not None:
                logger.warning("Dropping duplicate #%d under #%s", fields.id, parent.remote_id)
                continue
            child = build_node(fields, [])
            parent.children.append(child)
            attached.append(child)
        return attached
