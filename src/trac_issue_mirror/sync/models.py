"""Pydantic models for the ticket tree sync engine.

Defines the data contracts shared by every sync module:

- Identities: ``Pending``, ``Linked`` and ``IsBody``, combined into the
  tagged unions ``NodeIdentity`` and ``CommentIdentity``.
- Content: ``CloseState``, ``Comment`` and the recursive ``Node``.
- Session inputs: ``Side``, ``Normal``/``Force``/``Reset`` merge modes,
  ``SyncOptions``, ``LocalSource``/``RemoteSource``.
- Results: ``Resolution``, ``TreeResolution``, the ``Action`` union,
  ``SessionState``, ``SyncStatus`` and ``SyncOutcome``.

Everything except ``Node`` is frozen. ``Node`` is mutated in place by the
resolver (on a deep clone) and by the dispatcher when ids come back.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, model_validator

NodePath = tuple[int, ...]


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------


class Pending(BaseModel):
    """Not yet known to the remote; always "to create"."""

    kind: Literal["pending"] = "pending"

    model_config = {"frozen": True}


class Linked(BaseModel):
    """Known to the remote under a stable ticket (or comment) number."""

    kind: Literal["linked"] = "linked"
    id: int

    model_config = {"frozen": True}


class IsBody(BaseModel):
    """Marks the first comment of a node, which is the node's description."""

    kind: Literal["body"] = "body"

    model_config = {"frozen": True}


NodeIdentity = Annotated[Union[Pending, Linked], Field(discriminator="kind")]
CommentIdentity = Annotated[
    Union[IsBody, Linked, Pending], Field(discriminator="kind")
]


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------


class CloseKind(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    NOT_PLANNED = "not_planned"
    DUPLICATE = "duplicate"


class CloseState(BaseModel):
    """Open/closed state of a node, with the reason when closed.

    ``duplicate_of`` is set exactly when ``kind`` is DUPLICATE.
    """

    kind: CloseKind = CloseKind.OPEN
    duplicate_of: int | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_duplicate_target(self) -> CloseState:
        if (self.kind == CloseKind.DUPLICATE) != (self.duplicate_of is not None):
            raise ValueError(
                "duplicate_of must be set if and only if kind is 'duplicate'"
            )
        return self

    @classmethod
    def open(cls) -> CloseState:
        return cls()

    @classmethod
    def closed(cls) -> CloseState:
        return cls(kind=CloseKind.CLOSED)

    @classmethod
    def not_planned(cls) -> CloseState:
        return cls(kind=CloseKind.NOT_PLANNED)

    @classmethod
    def duplicate(cls, of: int) -> CloseState:
        return cls(kind=CloseKind.DUPLICATE, duplicate_of=of)

    @property
    def is_closed(self) -> bool:
        return self.kind != CloseKind.OPEN


class Comment(BaseModel):
    """One comment of a node; the first one (``IsBody``) is the description.

    Attributes:
        identity: ``IsBody`` for the description, ``Linked`` for a comment
            that exists remotely, ``Pending`` for one written offline.
        body: Rendered text.
        owned: Whether the configured user wrote it (only owned text may
            be pushed).
    """

    identity: CommentIdentity = Field(default_factory=Pending)
    body: str = ""
    owned: bool = True

    model_config = {"frozen": True}


def _body_only() -> list[Comment]:
    return [Comment(identity=IsBody())]


class Node(BaseModel):
    """One ticket in the mirrored tree, owning its children outright.

    Attributes:
        identity: ``Pending`` until the remote assigns a ticket number.
        title: Ticket summary.
        close_state: Open/closed state.
        owned: Whether the configured user reported the ticket.
        labels: Keywords; compared as a set.
        comments: Ordered comments; the first one is the body.
        children: Sub-tickets, matched across trees by identity only.
        blocks: Freeform local content, never compared or pushed.
        last_contents_change: Remote change time; only present once the
            node has been synced at least once.
    """

    identity: NodeIdentity = Field(default_factory=Pending)
    title: str
    close_state: CloseState = Field(default_factory=CloseState)
    owned: bool = True
    labels: list[str] = Field(default_factory=list)
    comments: list[Comment] = Field(default_factory=_body_only)
    children: list[Node] = Field(default_factory=list)
    blocks: list[str] = Field(default_factory=list)
    last_contents_change: datetime | None = None

    @property
    def remote_id(self) -> int | None:
        if isinstance(self.identity, Linked):
            return self.identity.id
        return None

    @property
    def is_linked(self) -> bool:
        return isinstance(self.identity, Linked)

    @property
    def body(self) -> str:
        return self.comments[0].body if self.comments else ""

    @property
    def label_set(self) -> frozenset[str]:
        return frozenset(self.labels)

    def link(self, remote_id: int) -> None:
        """Assign the remote id of a pending node.

        Raises:
            ValueError: If the node is already linked to a different id.
        """
        current = self.remote_id
        if current is not None and current != remote_id:
            raise ValueError(
                f"node already linked to #{current}, refusing to relink to #{remote_id}"
            )
        self.identity = Linked(id=remote_id)

    def child_by_id(self, remote_id: int) -> Node | None:
        for child in self.children:
            if child.remote_id == remote_id:
                return child
        return None

    def get_child(self, path: NodePath) -> Node:
        """Return the descendant at *path* (child indexes from this node).

        Raises:
            IndexError: If the path leaves the tree.
        """
        node = self
        for index in path:
            node = node.children[index]
        return node

    def walk(self, path: NodePath = ()) -> Iterator[tuple[NodePath, Node]]:
        """Yield ``(path, node)`` for this node and every descendant, preorder."""
        yield path, self
        for index, child in enumerate(self.children):
            yield from child.walk((*path, index))

    def pending_count(self) -> int:
        return sum(1 for _, node in self.walk() if not node.is_linked)

    def clone(self) -> Node:
        return self.model_copy(deep=True)


# ---------------------------------------------------------------------------
# Session inputs
# ---------------------------------------------------------------------------


class Side(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class Normal(BaseModel):
    """Fail on conflicts and hand them back to the caller."""

    kind: Literal["normal"] = "normal"

    model_config = {"frozen": True}


class Force(BaseModel):
    """Take ``prefer``'s content at every conflicted node."""

    kind: Literal["force"] = "force"
    prefer: Side

    model_config = {"frozen": True}


class Reset(BaseModel):
    """Adopt ``prefer``'s whole tree without comparing."""

    kind: Literal["reset"] = "reset"
    prefer: Side

    model_config = {"frozen": True}


MergeMode = Annotated[Union[Normal, Force, Reset], Field(discriminator="kind")]


class SyncOptions(BaseModel):
    pull: bool = False
    mode: MergeMode = Field(default_factory=Normal)

    model_config = {"frozen": True}


class LocalSource(BaseModel):
    """A session started from a working document on disk."""

    kind: Literal["local"] = "local"
    path: str

    model_config = {"frozen": True}


class RemoteSource(BaseModel):
    """A session started from a remote root ticket number."""

    kind: Literal["remote"] = "remote"
    id: int

    model_config = {"frozen": True}


SyncSource = Annotated[
    Union[LocalSource, RemoteSource], Field(discriminator="kind")
]


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class ResolutionKind(str, Enum):
    NO_CHANGE = "no_change"
    LOCAL_ONLY = "local_only"
    REMOTE_ONLY = "remote_only"
    AUTO_RESOLVED = "auto_resolved"
    CONFLICT = "conflict"


class Resolution(BaseModel):
    """Classification of one node's divergence.

    ``winner`` is set only for AUTO_RESOLVED.
    """

    kind: ResolutionKind
    winner: Side | None = None

    model_config = {"frozen": True}

    @property
    def takes_local(self) -> bool:
        """Local content stands and must reach the remote."""
        return self.kind == ResolutionKind.LOCAL_ONLY or (
            self.kind == ResolutionKind.AUTO_RESOLVED
            and self.winner == Side.LOCAL
        )

    @property
    def takes_remote(self) -> bool:
        """Remote content replaces local content."""
        return self.kind == ResolutionKind.REMOTE_ONLY or (
            self.kind == ResolutionKind.AUTO_RESOLVED
            and self.winner == Side.REMOTE
        )


NO_CHANGE = Resolution(kind=ResolutionKind.NO_CHANGE)
LOCAL_ONLY = Resolution(kind=ResolutionKind.LOCAL_ONLY)
REMOTE_ONLY = Resolution(kind=ResolutionKind.REMOTE_ONLY)
CONFLICT = Resolution(kind=ResolutionKind.CONFLICT)


def auto_resolved(winner: Side) -> Resolution:
    return Resolution(kind=ResolutionKind.AUTO_RESOLVED, winner=winner)


class TreeResolution(BaseModel):
    """Outcome of walking local and remote trees together.

    Attributes:
        tree: The resolved tree (a clone; inputs are never mutated).
        conflict_paths: Child-index paths of nodes that could not be
            resolved, in preorder.
        local_needs_update: The working document must be rewritten.
        remote_needs_update: Local changes must be pushed.
    """

    tree: Node
    conflict_paths: list[NodePath] = Field(default_factory=list)
    local_needs_update: bool = False
    remote_needs_update: bool = False

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflict_paths)


# ---------------------------------------------------------------------------
# Remote mutations
# ---------------------------------------------------------------------------


class CreateNode(BaseModel):
    """Create a pending node under an already-linked parent (or as a root)."""

    kind: Literal["create_node"] = "create_node"
    path: NodePath
    parent_id: int | None
    title: str
    body: str
    close_state: CloseState
    labels: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class UpdateNodeState(BaseModel):
    kind: Literal["update_state"] = "update_state"
    path: NodePath
    node_id: int
    close_state: CloseState

    model_config = {"frozen": True}


class UpdateNodeBody(BaseModel):
    kind: Literal["update_body"] = "update_body"
    path: NodePath
    node_id: int
    body: str

    model_config = {"frozen": True}


class UpdateNodeLabels(BaseModel):
    kind: Literal["update_labels"] = "update_labels"
    path: NodePath
    node_id: int
    labels: list[str]

    model_config = {"frozen": True}


class CreateComment(BaseModel):
    kind: Literal["create_comment"] = "create_comment"
    path: NodePath
    node_id: int
    comment_index: int
    body: str

    model_config = {"frozen": True}


Action = Annotated[
    Union[
        CreateNode, UpdateNodeState, UpdateNodeBody, UpdateNodeLabels, CreateComment
    ],
    Field(discriminator="kind"),
]

# index = depth; dispatched depth after depth, concurrently within a depth
ActionBatches = list[list[Action]]


# ---------------------------------------------------------------------------
# Session outcome
# ---------------------------------------------------------------------------


class SessionState(str, Enum):
    IDLE = "idle"
    BASELINE_BOOTSTRAPPED = "baseline_bootstrapped"
    FETCHING = "fetching"
    RESOLVED = "resolved"
    CLEAN = "clean"
    NEEDS_PUSH = "needs_push"
    NEEDS_PULL = "needs_pull"
    NEEDS_BOTH = "needs_both"
    CONFLICTED = "conflicted"


class SyncStatus(str, Enum):
    """Terminal state of a sync session."""

    CLEAN = "clean"
    NEEDS_PUSH = "needs_push"
    NEEDS_PULL = "needs_pull"
    NEEDS_BOTH = "needs_both"
    CONFLICTED = "conflicted"

    @classmethod
    def from_flags(cls, local_needs_update: bool, remote_needs_update: bool) -> SyncStatus:
        match (local_needs_update, remote_needs_update):
            case (True, True):
                return cls.NEEDS_BOTH
            case (True, False):
                return cls.NEEDS_PULL
            case (False, True):
                return cls.NEEDS_PUSH
            case _:
                return cls.CLEAN


class SyncOutcome(BaseModel):
    """Result of one ``SyncOrchestrator.open`` call.

    Conflicts are reported here as data. For CONFLICTED outcomes nothing
    was written anywhere and ``conflicts`` carries the per-node detail.

    Attributes:
        root_id: Remote id of the root, once known.
        document_path: Working document the session read or wrote.
        status: Terminal state.
        conflict_paths: Child-index paths of unresolved nodes.
        conflicts: Local/remote node pairs at each conflict path.
        actions_executed: Remote mutations that completed.
        actions_planned: Mutations a dry run would send (first create
            round only).
        dry_run: Whether this was a preview.
        local_written: Whether the working document was rewritten.
        baseline_committed: Whether a new baseline snapshot was stored.
        started_at: ISO 8601 start time.
        completed_at: ISO 8601 end time.
    """

    root_id: int | None = None
    document_path: str | None = None
    status: SyncStatus
    conflict_paths: list[NodePath] = Field(default_factory=list)
    conflicts: list[ConflictDetail] = Field(default_factory=list)
    actions_executed: list[Action] = Field(default_factory=list)
    actions_planned: list[Action] = Field(default_factory=list)
    dry_run: bool = False
    local_written: bool = False
    baseline_committed: bool = False
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def succeeded(self) -> bool:
        return self.status != SyncStatus.CONFLICTED


class ConflictDetail(BaseModel):
    """Both sides of one conflicted node, for showing to the user."""

    path: NodePath
    title: str
    local: Node
    remote: Node

    model_config = {"frozen": True}


SyncOutcome.model_rebuild()
