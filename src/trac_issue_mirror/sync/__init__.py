"""Three-way sync engine for mirrored Trac ticket trees.

Public API for reconciling a locally edited ticket tree with the live
Trac instance.

Architecture
------------
Every session compares three copies of the same tree: the **local**
working document, the **baseline** stored after the last successful sync,
and a **remote** copy fetched fresh for the session. Each node is
classified on its own content; children are matched across trees by
ticket id, never by position.

Modules:

- ``models``     -- Node, identities, merge modes, actions, outcomes.
- ``comparator`` -- ``classify``: per-node divergence.
- ``fetcher``    -- ``TreeFetcher``: depth-by-depth concurrent fetch.
- ``resolver``   -- ``resolve_tree``/``reset_tree`` and conflict policies.
- ``planner``    -- ``plan_creates``/``plan_updates``: depth batches.
- ``dispatch``   -- ``dispatch_batches``: sends batches, records new ids.
- ``remote``     -- ``RemoteClient`` protocol and ``TracRemote``.
- ``state``      -- JSON and git baseline stores.
- ``document``   -- working-document store and path mapping.
- ``engine``     -- ``SyncOrchestrator``: one full session.
- ``reporter``   -- text and JSON output.

Usage example
-------------
::

    from pathlib import Path
    from trac_issue_mirror.sync import (
        JsonBaselineStore, JsonDocumentStore, PathMapper, RemoteSource,
        SyncOptions, SyncOrchestrator, TracRemote, format_sync_outcome,
    )

    orchestrator = SyncOrchestrator(
        remote=TracRemote(trac_client),
        documents=JsonDocumentStore(),
        baselines=JsonBaselineStore(Path(".trac_issue_mirror/baselines")),
        mapper=PathMapper(Path("tickets")),
    )

    outcome = await orchestrator.open(RemoteSource(id=42), SyncOptions())
    print(format_sync_outcome(outcome))
"""

from .document import JsonDocumentStore, PathMapper
from .engine import SyncOrchestrator
from .errors import (
    BaselineCommitError,
    DocumentError,
    FetchError,
    PartialActionFailure,
    PlanningError,
    SyncError,
)
from .models import (
    CloseState,
    Comment,
    Force,
    LocalSource,
    Node,
    Normal,
    RemoteSource,
    Reset,
    Side,
    SyncOptions,
    SyncOutcome,
    SyncStatus,
)
from .remote import RemoteClient, TracRemote
from .reporter import (
    format_conflict_diff,
    format_dry_run_preview,
    format_sync_outcome,
    outcome_to_json,
)
from .state import GitBaselineStore, JsonBaselineStore, create_baseline_store

__all__ = [
    "BaselineCommitError",
    "CloseState",
    "Comment",
    "DocumentError",
    "FetchError",
    "Force",
    "GitBaselineStore",
    "JsonBaselineStore",
    "JsonDocumentStore",
    "LocalSource",
    "Node",
    "Normal",
    "PartialActionFailure",
    "PathMapper",
    "PlanningError",
    "RemoteClient",
    "RemoteSource",
    "Reset",
    "Side",
    "SyncError",
    "SyncOptions",
    "SyncOrchestrator",
    "SyncOutcome",
    "SyncStatus",
    "TracRemote",
    "create_baseline_store",
    "format_conflict_diff",
    "format_dry_run_preview",
    "format_sync_outcome",
    "outcome_to_json",
]
