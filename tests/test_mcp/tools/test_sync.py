"""Tests for the ticket tree sync tools.

The orchestrator is an AsyncMock; these tests cover argument parsing,
what reaches the orchestrator, and how outcomes are rendered.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from trac_issue_mirror.mcp.tools.sync import (
    SYNC_SPECS,
    _handle_ticket_tree_status,
    _handle_ticket_tree_sync,
    parse_mode,
    parse_source,
)
from trac_issue_mirror.sync.models import (
    Comment,
    ConflictDetail,
    Force,
    IsBody,
    Linked,
    LocalSource,
    Node,
    Normal,
    RemoteSource,
    Reset,
    Side,
    SyncOptions,
    SyncOutcome,
    SyncStatus,
    UpdateNodeBody,
)


def _node(body: str) -> Node:
    return Node(
        identity=Linked(id=2),
        title="Task A",
        comments=[Comment(identity=IsBody(), body=body)],
    )


def _outcome(**overrides) -> SyncOutcome:
    values = {
        "root_id": 1,
        "document_path": "/work/tickets/1.json",
        "status": SyncStatus.CLEAN,
        "started_at": "2026-02-07T10:00:00Z",
        "completed_at": "2026-02-07T10:00:01Z",
    }
    values.update(overrides)
    return SyncOutcome(**values)


_CONFLICTED = _outcome(
    status=SyncStatus.CONFLICTED,
    conflict_paths=[(0,)],
    conflicts=[
        ConflictDetail(path=(0,), title="Task A", local=_node("mine"), remote=_node("theirs"))
    ],
)


@pytest.fixture
def ctx():
    return SimpleNamespace(orchestrator=SimpleNamespace(open=AsyncMock(return_value=_outcome())))


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


class TestParseSource:
    @pytest.mark.parametrize("raw", [42, "42", "#42", " #42 "])
    def test_ticket_ids(self, raw):
        assert parse_source(raw) == RemoteSource(id=42)

    def test_document_path(self, tmp_path):
        doc = tmp_path / "42.json"
        doc.write_text("{}")
        assert parse_source(str(doc)) == LocalSource(path=str(doc.resolve()))

    @pytest.mark.parametrize(
        "raw,match",
        [
            (None, "source is required"),
            ("", "source is required"),
            (0, "must be positive"),
            ("tickets/42.json", "must be absolute"),
            (4.2, "ticket id or a path"),
        ],
    )
    def test_invalid(self, raw, match):
        with pytest.raises(ValueError, match=match):
            parse_source(raw)

    def test_missing_document(self, tmp_path):
        with pytest.raises(ValueError, match="not found"):
            parse_source(str(tmp_path / "nope.json"))


class TestParseMode:
    def test_default_is_normal(self):
        assert parse_mode(None, None) == Normal()
        assert parse_mode("none", "local") == Normal()

    def test_force_and_reset(self):
        assert parse_mode("force", "remote") == Force(prefer=Side.REMOTE)
        assert parse_mode("RESET", "Local") == Reset(prefer=Side.LOCAL)

    def test_side_required(self):
        with pytest.raises(ValueError, match="needs prefer"):
            parse_mode("force", None)

    def test_unknown_values(self):
        with pytest.raises(ValueError, match="Unknown override"):
            parse_mode("merge", "local")
        with pytest.raises(ValueError, match="Unknown side"):
            parse_mode("reset", "both")


# ---------------------------------------------------------------------------
# ticket_tree_sync
# ---------------------------------------------------------------------------


class TestTicketTreeSync:
    async def test_options_forwarded(self, ctx):
        await _handle_ticket_tree_sync(
            ctx,
            {"source": "#1", "pull": True, "override": "force", "prefer": "local"},
        )
        ctx.orchestrator.open.assert_awaited_once_with(
            RemoteSource(id=1),
            SyncOptions(pull=True, mode=Force(prefer=Side.LOCAL)),
            dry_run=False,
        )

    async def test_summary_and_structured_content(self, ctx):
        ctx.orchestrator.open.return_value = _outcome(
            status=SyncStatus.NEEDS_PUSH,
            actions_executed=[UpdateNodeBody(path=(0,), node_id=2, body="x")],
            baseline_committed=True,
        )
        result = await _handle_ticket_tree_sync(ctx, {"source": 1})

        assert not result.isError
        assert "Status: needs_push" in result.content[0].text
        assert "[BODY] #2" in result.content[0].text
        assert result.structuredContent["status"] == "needs_push"
        assert result.structuredContent["baseline_committed"] is True

    async def test_dry_run_preview(self, ctx):
        ctx.orchestrator.open.return_value = _outcome(
            status=SyncStatus.NEEDS_PUSH,
            dry_run=True,
            actions_planned=[UpdateNodeBody(path=(0,), node_id=2, body="x")],
        )
        result = await _handle_ticket_tree_sync(ctx, {"source": 1, "dry_run": True})
        assert ctx.orchestrator.open.await_args.kwargs["dry_run"] is True
        assert result.content[0].text.startswith("DRY RUN")
        assert result.structuredContent["actions_planned"][0]["kind"] == "update_body"

    async def test_conflicts_include_diffs(self, ctx):
        ctx.orchestrator.open.return_value = _CONFLICTED
        result = await _handle_ticket_tree_sync(ctx, {"source": 1})
        text = result.content[0].text
        assert "stopped on conflicts" in text
        assert "-mine" in text
        assert "+theirs" in text
        assert result.structuredContent["conflict_paths"] == [[0]]

    async def test_bad_arguments_never_reach_orchestrator(self, ctx):
        with pytest.raises(ValueError):
            await _handle_ticket_tree_sync(ctx, {"source": 1, "override": "reset"})
        ctx.orchestrator.open.assert_not_awaited()


# ---------------------------------------------------------------------------
# ticket_tree_status
# ---------------------------------------------------------------------------


class TestTicketTreeStatus:
    async def test_pulling_dry_run(self, ctx):
        ctx.orchestrator.open.return_value = _outcome(
            status=SyncStatus.NEEDS_PULL, dry_run=True
        )
        result = await _handle_ticket_tree_status(ctx, {"source": 1})

        ctx.orchestrator.open.assert_awaited_once_with(
            RemoteSource(id=1), SyncOptions(pull=True), dry_run=True
        )
        text = result.content[0].text
        assert text.startswith("Ticket tree #1")
        assert "Status:    needs_pull" in text
        assert "Pending remote changes: 0" in text

    async def test_new_tree(self, ctx):
        ctx.orchestrator.open.return_value = _outcome(
            root_id=None, status=SyncStatus.NEEDS_PUSH, dry_run=True
        )
        result = await _handle_ticket_tree_status(ctx, {"source": 1})
        assert result.content[0].text.startswith("New ticket tree")

    async def test_conflicts(self, ctx):
        ctx.orchestrator.open.return_value = _CONFLICTED
        result = await _handle_ticket_tree_status(ctx, {"source": 1})
        assert "Conflicts: 1" in result.content[0].text
        assert "Conflict at /0: Task A" in result.content[0].text


def test_specs_permissions():
    specs = {s.tool.name: s for s in SYNC_SPECS}
    assert specs["ticket_tree_status"].permissions == frozenset({"TICKET_VIEW"})
    assert "TICKET_MODIFY" in specs["ticket_tree_sync"].permissions
    assert specs["ticket_tree_sync"].tool.inputSchema["required"] == ["source"]
