"""Sync session orchestration.

``SyncOrchestrator.open`` drives one session for one ticket tree:

1. Read the working document (or, for a remote root with no document
   yet, fetch it, write it and store it as the first baseline).
2. Bootstrap the baseline from the local tree if none exists.
3. Fetch the remote tree when a pull is requested or the session started
   from a remote id.
4. Resolve local against baseline and remote (or adopt one side whole for
   Reset).
5. Stop with CONFLICTED if conflicts remain; nothing is written.
6. Otherwise push local changes (creates first, then updates), then
   rewrite the working document if it needs remote changes or new ids,
   and only then store the resolved tree as the new baseline.

A failed push leaves local ahead of the baseline so the next session
retries the same push. Pulled content reaches the working document only
after the push succeeded; on failure the document keeps its local content
plus the ids of nodes created before the failure, so the retry never
creates them twice.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from ..core.async_utils import run_sync
from .comparator import node_content_eq
from .dispatch import dispatch_batches
from .document import DocumentStore, PathMapper
from .errors import DocumentError, PartialActionFailure
from .fetcher import TreeFetcher
from .models import (
    Action,
    ConflictDetail,
    CreateComment,
    CreateNode,
    LocalSource,
    Node,
    RemoteSource,
    Reset,
    SessionState,
    Side,
    SyncOptions,
    SyncOutcome,
    SyncSource,
    SyncStatus,
    TreeResolution,
)
from .planner import count_actions, plan_creates, plan_updates
from .remote import RemoteClient
from .resolver import policy_for, reset_tree, resolve_tree
from .state import BaselineStore

logger = logging.getLogger(__name__)

_ID_ASSIGNING = (CreateNode, CreateComment)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def graft_assigned_ids(
    local: Node, pushed: Node, completed: list[Action]
) -> Node:
    """Copy ids assigned during a push from *pushed* onto a clone of *local*.

    Creates only target nodes and comments that came from *local*, so an
    action path in *pushed* addresses the same node in *local*.
    """
    grafted = local.clone()
    for action in completed:
        match action:
            case CreateNode():
                grafted.get_child(action.path).link(
                    pushed.get_child(action.path).remote_id
                )
            case CreateComment():
                node = grafted.get_child(action.path)
                source = pushed.get_child(action.path).comments[action.comment_index]
                node.comments[action.comment_index] = node.comments[
                    action.comment_index
                ].model_copy(update={"identity": source.identity})
    return grafted


def diverged_from(local: Node, baseline: Node) -> bool:
    """True if any node of *local* is new or differs in content from *baseline*."""
    known = {node.remote_id: node for _, node in baseline.walk() if node.is_linked}
    for _, node in local.walk():
        reference = known.get(node.remote_id) if node.is_linked else None
        if reference is None or not node_content_eq(node, reference):
            return True
    return False


class Session:
    """State of one sync session; every transition is logged at DEBUG.

    Each ``open`` call gets its own instance, so concurrent sessions on
    one orchestrator never share state.
    """

    def __init__(self, source: SyncSource):
        self.source = source
        self.state = SessionState.IDLE

    def transition(self, new_state: SessionState) -> None:
        logger.debug(
            "Session %r: %s -> %s", self.source, self.state.value, new_state.value
        )
        self.state = new_state


class SyncOrchestrator:
    """Run sync sessions between working documents and the remote tracker.

    Args:
        remote: Remote tracker client.
        documents: Working-document store.
        baselines: Baseline store.
        mapper: Maps root ids to documents and documents to baseline keys.
        commit_message: Baseline commit message; ``{id}`` is the root id.
    """

    def __init__(
        self,
        remote: RemoteClient,
        documents: DocumentStore,
        baselines: BaselineStore,
        mapper: PathMapper,
        commit_message: str = "sync: #{id}",
    ) -> None:
        self.remote = remote
        self.documents = documents
        self.baselines = baselines
        self.mapper = mapper
        self.commit_message = commit_message
        self.fetcher = TreeFetcher(remote)

    def _message(self, root_id: int | None) -> str:
        return self.commit_message.format(id=root_id if root_id is not None else "new")

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def open(
        self,
        source: SyncSource,
        options: SyncOptions | None = None,
        dry_run: bool = False,
    ) -> SyncOutcome:
        """Run one sync session.

        Args:
            source: ``LocalSource`` (working document path) or
                ``RemoteSource`` (root ticket id; always pulls).
            options: Pull flag and merge mode (Normal, Force, Reset).
            dry_run: Resolve and plan only; write nothing anywhere.

        Returns:
            A ``SyncOutcome``. Conflicts are reported in it, not raised.

        Raises:
            FetchError: The remote tree could not be fetched.
            DocumentError: The working document is missing or malformed.
            PartialActionFailure: A remote mutation failed mid-push.
            BaselineCommitError: The new baseline could not be stored.
        """
        options = options or SyncOptions()
        started_at = _now()
        session = Session(source)
        try:
            return await self._open(session, options, dry_run, started_at)
        finally:
            session.transition(SessionState.IDLE)

    async def _open(
        self,
        session: Session,
        options: SyncOptions,
        dry_run: bool,
        started_at: str,
    ) -> SyncOutcome:
        source = session.source
        match source:
            case RemoteSource(id=root_id):
                document = self.mapper.document_for(root_id)
                pull = True
            case LocalSource(path=path):
                document = Path(path)
                root_id = None
                pull = options.pull
            case _:
                raise TypeError(f"Unsupported sync source: {source!r}")

        local = await run_sync(self.documents.read, document)
        if local is None:
            if root_id is None:
                raise DocumentError(f"No working document at {document}")
            return await self._clone_remote(
                session, root_id, document, dry_run, started_at
            )

        if root_id is not None and local.remote_id != root_id:
            raise DocumentError(
                f"{document} holds ticket #{local.remote_id}, expected #{root_id}"
            )

        key = self.mapper.baseline_key(document)

        if not local.is_linked:
            return await self._create_tree(
                session, local, document, key, dry_run, started_at
            )

        baseline = await run_sync(self.baselines.read_baseline, key)
        if baseline is None:
            logger.info("No baseline for %s, bootstrapping from local tree", key)
            if not dry_run:
                await run_sync(
                    self.baselines.commit_baseline,
                    key,
                    local,
                    self._message(local.remote_id) + " (initial)",
                )
            baseline = local.clone()
            session.transition(SessionState.BASELINE_BOOTSTRAPPED)

        mode = options.mode
        if isinstance(mode, Reset):
            pull = mode.prefer == Side.REMOTE

        remote: Node | None = None
        if pull:
            session.transition(SessionState.FETCHING)
            remote = await self.fetcher.fetch(local.remote_id)

        resolution = self._resolve(local, baseline, remote, options)
        session.transition(SessionState.RESOLVED)

        if resolution.has_conflicts:
            session.transition(SessionState.CONFLICTED)
            logger.warning(
                "Sync of #%d stopped: %d conflict(s)",
                local.remote_id,
                len(resolution.conflict_paths),
            )
            return SyncOutcome(
                root_id=local.remote_id,
                document_path=str(document),
                status=SyncStatus.CONFLICTED,
                conflict_paths=resolution.conflict_paths,
                conflicts=self._conflict_details(resolution, remote),
                started_at=started_at,
                completed_at=_now(),
            )

        status = SyncStatus.from_flags(
            resolution.local_needs_update, resolution.remote_needs_update
        )
        session.transition(SessionState(status.value))

        # Reset(Local) and no-pull sessions push against what was last agreed
        reference = remote if remote is not None else baseline

        if dry_run:
            return self._preview(local.remote_id, document, status, resolution, reference, started_at)

        return await self._apply(
            local, resolution, reference, document, key, status, started_at
        )

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _resolve(
        self,
        local: Node,
        baseline: Node,
        remote: Node | None,
        options: SyncOptions,
    ) -> TreeResolution:
        mode = options.mode
        if isinstance(mode, Reset):
            logger.info("Resetting #%d to the %s tree", local.remote_id, mode.prefer.value)
            return reset_tree(local, remote, mode.prefer)
        if remote is not None:
            return resolve_tree(local, baseline, remote, policy_for(mode))
        # no remote copy: only local edits since the baseline can matter
        return TreeResolution(
            tree=local.clone(),
            remote_needs_update=diverged_from(local, baseline),
        )

    @staticmethod
    def _conflict_details(
        resolution: TreeResolution, remote: Node | None
    ) -> list[ConflictDetail]:
        if remote is None:
            return []
        remote_nodes = {n.remote_id: n for _, n in remote.walk() if n.is_linked}
        details = []
        for path in resolution.conflict_paths:
            local_node = resolution.tree.get_child(path)
            remote_node = remote_nodes[local_node.remote_id]
            details.append(
                ConflictDetail(
                    path=path,
                    title=local_node.title,
                    local=local_node.model_copy(update={"children": []}, deep=True),
                    remote=remote_node.model_copy(update={"children": []}, deep=True),
                )
            )
        return details

    # ------------------------------------------------------------------
    # Write-back and push
    # ------------------------------------------------------------------

    async def _push(self, tree: Node, reference: Node | None) -> list[Action]:
        """Create every pending node, then send updates.

        Creation repeats until no pending node remains, since children of a
        new node can only be created once its id is known.
        """
        executed: list[Action] = []
        try:
            while True:
                batches = plan_creates(tree)
                if count_actions(batches) == 0:
                    break
                executed.extend(await dispatch_batches(self.remote, batches, tree))

            updates = plan_updates(tree, reference)
            if count_actions(updates):
                executed.extend(await dispatch_batches(self.remote, updates, tree))
        except PartialActionFailure as e:
            e.completed = executed + e.completed
            raise
        return executed

    async def _push_and_save(
        self, tree: Node, reference: Node | None, document: Path, local: Node
    ) -> list[Action]:
        """Push *tree*; on failure save the ids assigned so far onto *local*."""
        try:
            executed = await self._push(tree, reference)
        except PartialActionFailure as e:
            if any(isinstance(a, _ID_ASSIGNING) for a in e.completed):
                logger.warning(
                    "Push failed after %d action(s); saving assigned ids to %s",
                    len(e.completed),
                    document,
                )
                await run_sync(
                    self.documents.write,
                    document,
                    graft_assigned_ids(local, tree, e.completed),
                )
            raise
        return executed

    async def _apply(
        self,
        local: Node,
        resolution: TreeResolution,
        reference: Node | None,
        document: Path,
        key: str,
        status: SyncStatus,
        started_at: str,
    ) -> SyncOutcome:
        tree = resolution.tree

        executed: list[Action] = []
        if resolution.remote_needs_update:
            executed = await self._push_and_save(tree, reference, document, local)

        written = resolution.local_needs_update or any(
            isinstance(a, _ID_ASSIGNING) for a in executed
        )
        if written:
            await run_sync(self.documents.write, document, tree)

        committed = await run_sync(
            self.baselines.commit_baseline, key, tree, self._message(tree.remote_id)
        )
        logger.info(
            "Sync of #%s finished: %s, %d action(s), baseline %s",
            tree.remote_id,
            status.value,
            len(executed),
            "committed" if committed else "unchanged",
        )
        return SyncOutcome(
            root_id=tree.remote_id,
            document_path=str(document),
            status=status,
            actions_executed=executed,
            local_written=written,
            baseline_committed=committed,
            started_at=started_at,
            completed_at=_now(),
        )

    def _preview(
        self,
        root_id: int | None,
        document: Path,
        status: SyncStatus,
        resolution: TreeResolution,
        reference: Node | None,
        started_at: str,
    ) -> SyncOutcome:
        planned: list[Action] = []
        if resolution.remote_needs_update:
            # children of pending nodes only become plannable once created
            for batches in (plan_creates(resolution.tree), plan_updates(resolution.tree, reference)):
                for batch in batches:
                    planned.extend(batch)
        return SyncOutcome(
            root_id=root_id,
            document_path=str(document),
            status=status,
            actions_planned=planned,
            dry_run=True,
            started_at=started_at,
            completed_at=_now(),
        )

    # ------------------------------------------------------------------
    # Sessions without a linked local tree
    # ------------------------------------------------------------------

    async def _clone_remote(
        self,
        session: Session,
        root_id: int,
        document: Path,
        dry_run: bool,
        started_at: str,
    ) -> SyncOutcome:
        """First session for a remote root: fetch it and make it local."""
        session.transition(SessionState.FETCHING)
        remote = await self.fetcher.fetch(root_id)
        session.transition(SessionState.NEEDS_PULL)

        if dry_run:
            return SyncOutcome(
                root_id=root_id,
                document_path=str(document),
                status=SyncStatus.NEEDS_PULL,
                dry_run=True,
                started_at=started_at,
                completed_at=_now(),
            )

        await run_sync(self.documents.write, document, remote)
        committed = await run_sync(
            self.baselines.commit_baseline,
            self.mapper.baseline_key(document),
            remote,
            self._message(root_id),
        )
        logger.info("Cloned ticket tree #%d into %s", root_id, document)
        return SyncOutcome(
            root_id=root_id,
            document_path=str(document),
            status=SyncStatus.NEEDS_PULL,
            local_written=True,
            baseline_committed=committed,
            started_at=started_at,
            completed_at=_now(),
        )

    async def _create_tree(
        self,
        session: Session,
        local: Node,
        document: Path,
        key: str,
        dry_run: bool,
        started_at: str,
    ) -> SyncOutcome:
        """First session for a tree written offline: create it remotely."""
        resolution = TreeResolution(tree=local.clone(), remote_needs_update=True)
        session.transition(SessionState.NEEDS_PUSH)

        if dry_run:
            return self._preview(None, document, SyncStatus.NEEDS_PUSH, resolution, None, started_at)

        tree = resolution.tree
        executed = await self._push_and_save(tree, None, document, local)
        await run_sync(self.documents.write, document, tree)
        committed = await run_sync(
            self.baselines.commit_baseline, key, tree, self._message(tree.remote_id)
        )
        logger.info(
            "Created ticket tree #%s from %s (%d action(s))",
            tree.remote_id,
            document,
            len(executed),
        )
        return SyncOutcome(
            root_id=tree.remote_id,
            document_path=str(document),
            status=SyncStatus.NEEDS_PUSH,
            actions_executed=executed,
            local_written=True,
            baseline_committed=committed,
            started_at=started_at,
            completed_at=_now(),
        )
