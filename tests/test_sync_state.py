"""Tests for baseline persistence.

Covers:
- read_baseline returns None before the first commit
- commit/read round-trip for both stores
- committing an unchanged tree is a benign no-op (returns False)
- content_hash normalizes BOM, CRLF, trailing whitespace
- genuine storage failures raise BaselineCommitError
- the git store ignores an enclosing repository
"""

from __future__ import annotations

import json
import shutil
import subprocess
from pathlib import Path

import pytest
from sync_fakes import linked, pending

from trac_issue_mirror.sync.errors import BaselineCommitError
from trac_issue_mirror.sync.state import (
    GitBaselineStore,
    JsonBaselineStore,
    content_hash,
    create_baseline_store,
)

requires_git = pytest.mark.skipif(
    shutil.which("git") is None, reason="git is not installed"
)


def _tree(body: str = "A"):
    return linked(1, body=body, children=[linked(2, body="child"), pending("draft")])


# ---------------------------------------------------------------------------
# content_hash
# ---------------------------------------------------------------------------


class TestContentHash:
    def test_consistent(self):
        assert content_hash("hello\n") == content_hash("hello\n")

    def test_normalizes_bom_crlf_and_trailing_whitespace(self):
        """BOM, CRLF, trailing spaces and blank tail lines are ignored."""
        assert content_hash("\ufeffa  \r\nb\r\n\r\n") == content_hash("a\nb")

    def test_different_content(self):
        assert content_hash("a") != content_hash("b")


# ---------------------------------------------------------------------------
# JSON snapshots
# ---------------------------------------------------------------------------


class TestJsonBaselineStore:
    def test_missing_baseline(self, tmp_path: Path):
        assert JsonBaselineStore(tmp_path / "nope").read_baseline("1.json") is None

    def test_round_trip(self, tmp_path: Path):
        store = JsonBaselineStore(tmp_path / "baselines")
        tree = _tree()
        assert store.commit_baseline("1.json", tree, "sync: #1") is True
        assert store.read_baseline("1.json") == tree

    def test_record_metadata(self, tmp_path: Path):
        store = JsonBaselineStore(tmp_path)
        store.commit_baseline("1.json", _tree(), "sync: #1")
        record = json.loads((tmp_path / "1.json.baseline.json").read_text())
        assert record["version"] == 1
        assert record["message"] == "sync: #1"
        assert record["tree"]["identity"] == {"kind": "linked", "id": 1}

    def test_unchanged_commit_is_noop(self, tmp_path: Path):
        """Nothing to commit is reported as False, never as an error."""
        store = JsonBaselineStore(tmp_path)
        store.commit_baseline("1.json", _tree(), "first")
        assert store.commit_baseline("1.json", _tree(), "second") is False
        record = json.loads((tmp_path / "1.json.baseline.json").read_text())
        assert record["message"] == "first"

    def test_changed_commit_replaces(self, tmp_path: Path):
        store = JsonBaselineStore(tmp_path)
        store.commit_baseline("1.json", _tree("A"), "first")
        assert store.commit_baseline("1.json", _tree("B"), "second") is True
        assert store.read_baseline("1.json").body == "B"

    def test_corrupt_snapshot(self, tmp_path: Path):
        (tmp_path / "1.json.baseline.json").write_text("{not json")
        with pytest.raises(BaselineCommitError, match="Corrupt"):
            JsonBaselineStore(tmp_path).read_baseline("1.json")

    def test_storage_failure(self, tmp_path: Path):
        """A state_dir that is a file is a genuine failure."""
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(BaselineCommitError):
            JsonBaselineStore(blocker).commit_baseline("1.json", _tree(), "m")


# ---------------------------------------------------------------------------
# Git repository
# ---------------------------------------------------------------------------


@requires_git
class TestGitBaselineStore:
    def test_missing_repo(self, tmp_path: Path):
        assert GitBaselineStore(tmp_path / "repo").read_baseline("1.json") is None

    def test_round_trip_initialises_repo(self, tmp_path: Path):
        repo = tmp_path / "repo"
        store = GitBaselineStore(repo)
        tree = _tree()
        assert store.commit_baseline("1.json", tree, "sync: #1") is True
        assert (repo / ".git").is_dir()
        assert store.read_baseline("1.json") == tree

        log = subprocess.run(
            ["git", "-C", str(repo), "log", "--format=%s"],
            capture_output=True,
            text=True,
            check=True,
        )
        assert log.stdout.strip() == "sync: #1"

    def test_unchanged_commit_is_noop(self, tmp_path: Path):
        store = GitBaselineStore(tmp_path / "repo")
        store.commit_baseline("1.json", _tree(), "first")
        assert store.commit_baseline("1.json", _tree(), "second") is False

    def test_read_returns_committed_version(self, tmp_path: Path):
        """An uncommitted edit of the snapshot file is not the baseline."""
        repo = tmp_path / "repo"
        store = GitBaselineStore(repo)
        store.commit_baseline("1.json", _tree("A"), "first")
        (repo / "1.json.baseline.json").write_text("garbage")
        assert store.read_baseline("1.json").body == "A"

    def test_enclosing_repository_ignored(self, tmp_path: Path):
        """A state dir inside another repo gets its own repository."""
        subprocess.run(["git", "init", "--quiet", str(tmp_path)], check=True)
        repo = tmp_path / "state"
        repo.mkdir()
        store = GitBaselineStore(repo)
        assert store.read_baseline("1.json") is None
        store.commit_baseline("1.json", _tree(), "sync: #1")
        assert (repo / ".git").is_dir()


def test_create_baseline_store(tmp_path: Path):
    assert isinstance(create_baseline_store("json", tmp_path), JsonBaselineStore)
    assert isinstance(create_baseline_store("git", tmp_path), GitBaselineStore)
    with pytest.raises(ValueError, match="Unknown baseline backend"):
        create_baseline_store("svn", tmp_path)
