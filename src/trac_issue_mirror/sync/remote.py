"""Remote side of the sync: the client protocol and its Trac implementation.

The engine only sees ``RemoteClient``. ``TracRemote`` implements it on top
of the blocking ``TracClient``, bridging every XML-RPC call through
``run_sync_limited`` so concurrent fetches and mutations share the
request semaphore.

Trac mapping:

- a sub-ticket is a ticket whose ``parent`` field holds ``#<parent id>``
- ``description`` is the body, ``keywords`` the label set
- changelog entries of field ``comment`` are the remaining comments
- ``changetime`` is the last contents change
- tickets closed as ``duplicate`` are never returned
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime
from typing import Any, Protocol

from pydantic import BaseModel, Field

from ..core.async_utils import run_sync_limited
from ..core.client import TracClient
from .errors import FetchError
from .models import CloseKind, CloseState

logger = logging.getLogger(__name__)

_KEYWORD_SPLIT = re.compile(r"[\s,]+")

# Trac resolutions that mean "closed without doing it"
_NOT_PLANNED_RESOLUTIONS = frozenset({"wontfix", "invalid", "worksforme"})

_RESOLUTION_FOR_KIND = {
    CloseKind.CLOSED: "fixed",
    CloseKind.NOT_PLANNED: "wontfix",
    CloseKind.DUPLICATE: "duplicate",
}


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class NodeFields(BaseModel):
    """A node's own fields as the remote reports them."""

    id: int
    title: str
    description: str = ""
    close_state: CloseState = Field(default_factory=CloseState)
    labels: list[str] = Field(default_factory=list)
    owned: bool = False
    changed_at: datetime | None = None

    model_config = {"frozen": True}


class RemoteComment(BaseModel):
    id: int
    body: str
    owned: bool = False

    model_config = {"frozen": True}


class FetchedNode(BaseModel):
    """Root fetch result: own fields, comments, and the children's fields."""

    fields: NodeFields
    comments: list[RemoteComment] = Field(default_factory=list)
    children: list[NodeFields] = Field(default_factory=list)

    model_config = {"frozen": True}


class ChildPayload(BaseModel):
    """Per-child fetch result: comments and grandchildren's fields."""

    comments: list[RemoteComment] = Field(default_factory=list)
    children: list[NodeFields] = Field(default_factory=list)

    model_config = {"frozen": True}


class RemoteClient(Protocol):
    """Abstract remote tracker as consumed by the sync engine.

    Implementations must never return a node closed as duplicate.
    """

    async def fetch_node(self, node_id: int) -> FetchedNode: ...

    async def fetch_child(self, node_id: int) -> ChildPayload: ...

    async def create_node(
        self,
        parent_id: int | None,
        title: str,
        body: str,
        close_state: CloseState,
        labels: list[str],
    ) -> int: ...

    async def update_node_state(self, node_id: int, close_state: CloseState) -> None: ...

    async def update_node_body(self, node_id: int, body: str) -> None: ...

    async def update_node_labels(self, node_id: int, labels: list[str]) -> None: ...

    async def add_comment(self, node_id: int, body: str) -> int: ...


# ---------------------------------------------------------------------------
# Trac field conversion
# ---------------------------------------------------------------------------


def parse_keywords(raw: str | None) -> list[str]:
    """Split a Trac keywords field into labels, dropping repeats."""
    seen: dict[str, None] = {}
    for word in _KEYWORD_SPLIT.split(raw or ""):
        if word:
            seen.setdefault(word, None)
    return list(seen)


def close_state_from_trac(status: str, resolution: str) -> CloseState | None:
    """Map Trac status/resolution to a close state.

    Returns None for tickets closed as duplicate; those are filtered out
    by the caller.
    """
    if status != "closed":
        return CloseState.open()
    match resolution:
        case "duplicate":
            return None
        case "fixed" | "":
            return CloseState.closed()
        case r if r in _NOT_PLANNED_RESOLUTIONS:
            return CloseState.not_planned()
        case _:
            logger.warning(
                "Unknown Trac resolution %r, treating as closed", resolution
            )
            return CloseState.closed()


def close_state_to_trac(close_state: CloseState) -> dict[str, Any]:
    """Workflow attributes that move a ticket into *close_state*."""
    if not close_state.is_closed:
        return {"action": "reopen"}
    return {
        "action": "resolve",
        "action_resolve_resolve_resolution": _RESOLUTION_FOR_KIND[close_state.kind],
    }


def _comment_number(raw: Any) -> int | None:
    # replies are numbered "parent.child"; the last part is the comment's own number
    text = str(raw or "").rsplit(".", 1)[-1]
    return int(text) if text.isdigit() else None


# ---------------------------------------------------------------------------
# Trac implementation
# ---------------------------------------------------------------------------


class TracRemote:
    """``RemoteClient`` backed by Trac's XML-RPC ticket API.

    Args:
        client: Connected ``TracClient``.
        parent_field: Custom ticket field holding ``#<parent id>``.
    """

    def __init__(self, client: TracClient, parent_field: str = "parent"):
        self._client = client
        self._parent_field = parent_field
        self._username = client.config.username

    # -- reads --------------------------------------------------------------

    def _to_fields(self, ticket: list[Any]) -> NodeFields | None:
        ticket_id, _created, modified, attrs = ticket[:4]
        close_state = close_state_from_trac(
            attrs.get("status", ""), attrs.get("resolution", "")
        )
        if close_state is None:
            return None
        changed_at = attrs.get("changetime", modified)
        return NodeFields(
            id=int(ticket_id),
            title=attrs.get("summary", ""),
            description=attrs.get("description", "") or "",
            close_state=close_state,
            labels=parse_keywords(attrs.get("keywords")),
            owned=attrs.get("reporter") == self._username,
            changed_at=changed_at if isinstance(changed_at, datetime) else None,
        )

    async def _comments(self, node_id: int) -> list[RemoteComment]:
        changelog = await run_sync_limited(self._client.get_ticket_changelog, node_id)
        comments = []
        for _time, author, field, oldvalue, newvalue, *_ in changelog:
            if field != "comment" or not newvalue:
                continue
            number = _comment_number(oldvalue)
            if number is None:
                continue
            comments.append(
                RemoteComment(
                    id=number, body=newvalue, owned=author == self._username
                )
            )
        return comments

    async def _children(self, node_id: int) -> list[NodeFields]:
        child_ids = await run_sync_limited(
            self._client.search_tickets,
            f"{self._parent_field}=#{node_id}&order=id&max=0",
        )
        tickets = await asyncio.gather(
            *(run_sync_limited(self._client.get_ticket, cid) for cid in child_ids)
        )
        children = []
        for ticket in tickets:
            fields = self._to_fields(ticket)
            if fields is None:
                logger.debug("Skipping duplicate child #%s of #%d", ticket[0], node_id)
                continue
            children.append(fields)
        return children

    async def fetch_node(self, node_id: int) -> FetchedNode:
        ticket = await run_sync_limited(self._client.get_ticket, node_id)
        fields = self._to_fields(ticket)
        if fields is None:
            raise FetchError(f"Ticket #{node_id} is closed as duplicate", node_id)
        comments, children = await asyncio.gather(
            self._comments(node_id), self._children(node_id)
        )
        return FetchedNode(fields=fields, comments=comments, children=children)

    async def fetch_child(self, node_id: int) -> ChildPayload:
        comments, children = await asyncio.gather(
            self._comments(node_id), self._children(node_id)
        )
        return ChildPayload(comments=comments, children=children)

    # -- writes -------------------------------------------------------------

    async def create_node(
        self,
        parent_id: int | None,
        title: str,
        body: str,
        close_state: CloseState,
        labels: list[str],
    ) -> int:
        attributes: dict[str, Any] = {"keywords": " ".join(labels)}
        if parent_id is not None:
            attributes[self._parent_field] = f"#{parent_id}"
        node_id = await run_sync_limited(
            self._client.create_ticket, title, body, attributes
        )
        logger.info("Created ticket #%d (parent %s)", node_id, parent_id)
        if close_state.is_closed:
            await self._set_state(node_id, close_state, was_closed=False)
        return node_id

    async def _set_state(
        self, node_id: int, close_state: CloseState, was_closed: bool
    ) -> None:
        comment = ""
        if close_state.duplicate_of is not None:
            comment = f"Duplicate of #{close_state.duplicate_of}."
        if was_closed and close_state.is_closed:
            # the default workflow offers only "reopen" on a closed ticket
            await run_sync_limited(
                self._client.update_ticket,
                node_id,
                "",
                close_state_to_trac(CloseState.open()),
            )
        await run_sync_limited(
            self._client.update_ticket,
            node_id,
            comment,
            close_state_to_trac(close_state),
        )
        logger.info("Set ticket #%d to %s", node_id, close_state.kind.value)

    async def update_node_state(self, node_id: int, close_state: CloseState) -> None:
        """Move a ticket to *close_state*, reopening it first if already closed."""
        ticket = await run_sync_limited(self._client.get_ticket, node_id)
        was_closed = ticket[3].get("status") == "closed"
        if not (was_closed or close_state.is_closed):
            logger.debug("Ticket #%d is already open", node_id)
            return
        await self._set_state(node_id, close_state, was_closed)

    async def update_node_body(self, node_id: int, body: str) -> None:
        await run_sync_limited(
            self._client.update_ticket, node_id, "", {"description": body}
        )
        logger.info("Updated description of ticket #%d", node_id)

    async def update_node_labels(self, node_id: int, labels: list[str]) -> None:
        await run_sync_limited(
            self._client.update_ticket, node_id, "", {"keywords": " ".join(labels)}
        )
        logger.info("Updated keywords of ticket #%d", node_id)

    async def add_comment(self, node_id: int, body: str) -> int:
        await run_sync_limited(self._client.update_ticket, node_id, body)
        comments = await self._comments(node_id)
        if not comments:
            raise FetchError(
                f"Comment on ticket #{node_id} was not found after posting", node_id
            )
        logger.info("Added comment %d to ticket #%d", comments[-1].id, node_id)
        return comments[-1].id
