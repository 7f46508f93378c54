"""Tests for tree-wide resolution, conflict policies and Reset."""

from __future__ import annotations

import pytest
from sync_fakes import linked, pending

from trac_issue_mirror.sync.models import (
    CloseState,
    Comment,
    Force,
    Linked,
    Normal,
    Reset,
    Side,
)
from trac_issue_mirror.sync.resolver import (
    FailOnConflict,
    PreferSide,
    apply_remote_content,
    policy_for,
    reset_tree,
    resolve_tree,
)

# ---------------------------------------------------------------------------
# Single node
# ---------------------------------------------------------------------------


class TestResolveRoot:
    def test_first_sync_equal_is_noop(self):
        """No consensus and local == remote: nothing to do."""
        result = resolve_tree(linked(1, body="A"), None, linked(1, body="A"))
        assert result.conflict_paths == []
        assert not result.local_needs_update
        assert not result.remote_needs_update

    def test_all_equal_is_noop(self):
        node = linked(1, body="A", children=[linked(2, body="c")])
        result = resolve_tree(node, node, node)
        assert not result.has_conflicts
        assert not result.local_needs_update
        assert not result.remote_needs_update
        assert result.tree == node

    def test_remote_only_takes_remote_content(self):
        """consensus=A, local=A, remote=B resolves to B and needs a pull."""
        result = resolve_tree(
            linked(1, body="A"), linked(1, body="A"), linked(1, body="B")
        )
        assert result.tree.body == "B"
        assert result.local_needs_update
        assert not result.remote_needs_update

    def test_local_only_keeps_local_content(self):
        """consensus=A, local=L, remote=A keeps L and needs a push."""
        result = resolve_tree(
            linked(1, body="L"), linked(1, body="A"), linked(1, body="A")
        )
        assert result.tree.body == "L"
        assert result.remote_needs_update
        assert not result.local_needs_update

    def test_auto_resolved_remote_wins(self):
        """local=L@100, remote=R@200 resolves to R."""
        result = resolve_tree(
            linked(1, body="L", changed=100),
            linked(1, body="A"),
            linked(1, body="R", changed=200),
        )
        assert result.tree.body == "R"
        assert result.local_needs_update
        assert not result.has_conflicts

    def test_auto_resolved_local_wins(self):
        result = resolve_tree(
            linked(1, body="L", changed=300),
            linked(1, body="A"),
            linked(1, body="R", changed=200),
        )
        assert result.tree.body == "L"
        assert result.remote_needs_update

    def test_conflict_at_root(self):
        """Equal timestamps: conflict at path [] and content untouched."""
        result = resolve_tree(
            linked(1, body="L", changed=100),
            linked(1, body="A"),
            linked(1, body="R", changed=100),
        )
        assert result.conflict_paths == [()]
        assert result.tree.body == "L"

    def test_inputs_are_not_mutated(self):
        local = linked(1, body="A")
        remote = linked(1, body="B", children=[linked(2)])
        resolve_tree(local, linked(1, body="A"), remote)
        assert local.body == "A"
        assert local.children == []

    def test_mismatched_roots_rejected(self):
        with pytest.raises(ValueError, match="Cannot resolve"):
            resolve_tree(linked(1), None, linked(2))

    def test_remote_content_keeps_title_and_blocks(self):
        """Pulling content never touches title, blocks or children."""
        local = linked(1, title="Local title", body="A")
        local.blocks = ["my notes"]
        remote = linked(
            1,
            title="Remote title",
            body="B",
            labels=["x"],
            close_state=CloseState.closed(),
            changed=50,
        )
        result = resolve_tree(local, linked(1, body="A"), remote)
        assert result.tree.title == "Local title"
        assert result.tree.blocks == ["my notes"]
        assert result.tree.labels == ["x"]
        assert result.tree.close_state == CloseState.closed()
        assert result.tree.last_contents_change == remote.last_contents_change


# ---------------------------------------------------------------------------
# Children
# ---------------------------------------------------------------------------


class TestResolveChildren:
    def test_remote_only_child_appended(self):
        """A child only the remote has is appended and needs a pull."""
        remote_child = linked(5, body="new", children=[linked(6)])
        result = resolve_tree(
            linked(1), linked(1), linked(1, children=[remote_child])
        )
        assert [c.remote_id for c in result.tree.children] == [5]
        assert result.tree.children[0].children[0].remote_id == 6
        assert result.local_needs_update
        assert not result.remote_needs_update

    def test_children_matched_by_id_not_position(self):
        """Reordered children still pair up by ticket id."""
        local = linked(1, children=[linked(3, body="three"), linked(2, body="two")])
        remote = linked(1, children=[linked(2, body="two"), linked(3, body="three")])
        result = resolve_tree(local, local, remote)
        assert not result.local_needs_update
        assert not result.remote_needs_update
        assert [c.remote_id for c in result.tree.children] == [3, 2]

    def test_pending_child_needs_push(self):
        local = linked(1, children=[pending("New task")])
        result = resolve_tree(local, linked(1), linked(1))
        assert result.remote_needs_update
        assert result.tree.children[0].title == "New task"

    def test_local_child_missing_remotely_is_kept(self):
        """Deletion is not propagated: the local copy stays."""
        local = linked(1, children=[linked(2)])
        result = resolve_tree(local, local, linked(1))
        assert [c.remote_id for c in result.tree.children] == [2]
        assert not result.local_needs_update
        assert not result.remote_needs_update

    def test_conflict_still_descends(self):
        """A conflict at a node does not block resolving its children."""
        consensus = linked(1, body="A", children=[linked(2, body="a")])
        local = linked(1, body="L", children=[linked(2, body="a")])
        remote = linked(1, body="R", children=[linked(2, body="b")])
        result = resolve_tree(local, consensus, remote)
        assert result.conflict_paths == [()]
        assert result.tree.body == "L"
        assert result.tree.children[0].body == "b"
        assert result.local_needs_update

    def test_conflict_path_uses_local_child_index(self):
        consensus = linked(1, children=[linked(2), linked(3, body="A")])
        local = linked(1, children=[linked(2), linked(3, body="L")])
        remote = linked(1, children=[linked(3, body="R"), linked(2)])
        result = resolve_tree(local, consensus, remote)
        assert result.conflict_paths == [(1,)]

    def test_three_level_grandchild_only(self):
        """Only the grandchild diverges; ancestors stay untouched."""
        consensus = linked(1, body="root", children=[
            linked(2, body="child", children=[linked(3, body="A")])
        ])
        local = linked(1, body="root", children=[
            linked(2, body="child", children=[linked(3, body="L", changed=100)])
        ])
        remote = linked(1, body="root", children=[
            linked(2, body="child", children=[linked(3, body="R", changed=200)])
        ])
        result = resolve_tree(local, consensus, remote)
        assert not result.has_conflicts
        assert result.tree.body == "root"
        assert result.tree.children[0].body == "child"
        assert result.tree.get_child((0, 0)).body == "R"
        assert result.local_needs_update
        assert not result.remote_needs_update

    def test_new_child_without_consensus_child(self):
        """A child first seen in this session is compared without consensus."""
        local = linked(1, children=[linked(2, body="x")])
        remote = linked(1, children=[linked(2, body="x")])
        result = resolve_tree(local, linked(1), remote)
        assert not result.local_needs_update
        assert not result.remote_needs_update


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


class TestForce:
    def _diverged(self):
        consensus = linked(1, body="A", children=[linked(2, body="a"), linked(3, body="x")])
        local = linked(1, body="L", children=[linked(2, body="a"), linked(3, body="y")])
        remote = linked(1, body="R", children=[linked(2, body="b"), linked(3, body="x")])
        return local, consensus, remote

    def test_force_remote(self):
        """Conflicted nodes take remote content; others resolve normally."""
        local, consensus, remote = self._diverged()
        result = resolve_tree(local, consensus, remote, PreferSide(Side.REMOTE))
        assert not result.has_conflicts
        assert result.tree.body == "R"
        assert result.tree.children[0].body == "b"
        assert result.tree.children[1].body == "y"
        assert result.local_needs_update
        assert result.remote_needs_update

    def test_force_local(self):
        local, consensus, remote = self._diverged()
        result = resolve_tree(local, consensus, remote, PreferSide(Side.LOCAL))
        assert not result.has_conflicts
        assert result.tree.body == "L"
        assert result.tree.children[0].body == "b"
        assert result.remote_needs_update

    def test_fail_on_conflict_is_default(self):
        local, consensus, remote = self._diverged()
        result = resolve_tree(local, consensus, remote)
        assert result.conflict_paths == [()]

    def test_policy_for(self):
        assert isinstance(policy_for(Normal()), FailOnConflict)
        policy = policy_for(Force(prefer=Side.LOCAL))
        assert isinstance(policy, PreferSide)
        assert policy.prefer == Side.LOCAL

    def test_policy_for_reset_rejected(self):
        with pytest.raises(ValueError, match="reset_tree"):
            policy_for(Reset(prefer=Side.REMOTE))


class TestReset:
    def test_reset_remote_is_remote_tree(self):
        """Reset(remote) is field-identical to the remote tree."""
        local = linked(1, body="L", children=[pending("draft")])
        remote = linked(1, body="R", children=[linked(2, body="c")], changed=10)
        result = reset_tree(local, remote, Side.REMOTE)
        assert result.tree == remote
        assert result.tree is not remote
        assert result.local_needs_update
        assert not result.remote_needs_update

    def test_reset_local_is_local_tree(self):
        local = linked(1, body="L", children=[pending("draft")])
        result = reset_tree(local, None, Side.LOCAL)
        assert result.tree == local
        assert result.remote_needs_update
        assert not result.local_needs_update

    def test_reset_remote_needs_remote_tree(self):
        with pytest.raises(ValueError):
            reset_tree(linked(1), None, Side.REMOTE)


def test_apply_remote_content_copies_comments():
    target = linked(1, body="old")
    source = linked(
        1, body="new", comments=[Comment(identity=Linked(id=4), body="reply")]
    )
    apply_remote_content(target, source)
    assert target.body == "new"
    assert [c.body for c in target.comments] == ["new", "reply"]
