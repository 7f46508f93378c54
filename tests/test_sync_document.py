"""Tests for working documents and path mapping."""

from __future__ import annotations

from pathlib import Path

import pytest
from sync_fakes import linked, pending

from trac_issue_mirror.sync.document import (
    JsonDocumentStore,
    PathMapper,
    dump_tree,
    load_tree,
)
from trac_issue_mirror.sync.errors import DocumentError
from trac_issue_mirror.sync.models import CloseState, Comment, Linked, Pending


class TestJsonDocumentStore:
    def test_missing_document(self, tmp_path: Path):
        assert JsonDocumentStore().read(tmp_path / "none.json") is None

    def test_write_then_read(self, tmp_path: Path):
        """Identities, close reasons and blocks survive a save."""
        tree = linked(
            1,
            body="root",
            close_state=CloseState.duplicate(9),
            comments=[Comment(identity=Pending(), body="draft reply")],
            children=[pending("new child")],
        )
        tree.blocks = ["## notes", "- keep this"]
        path = tmp_path / "sub" / "1.json"

        store = JsonDocumentStore()
        store.write(path, tree)
        loaded = store.read(path)

        assert loaded == tree
        assert loaded.comments[1].identity == Pending()
        assert loaded.children[0].remote_id is None

    def test_malformed_document(self, tmp_path: Path):
        path = tmp_path / "bad.json"
        path.write_text('{"title": 5, "identity": {"kind": "linked"}}')
        with pytest.raises(DocumentError, match="Malformed"):
            JsonDocumentStore().read(path)

    def test_latin1_document(self, tmp_path: Path):
        """Documents saved in a legacy encoding still load."""
        text = dump_tree(linked(1, body="Fehlerbehebung für Größe und Übergänge"))
        path = tmp_path / "1.json"
        path.write_bytes(text.encode("latin-1"))
        assert JsonDocumentStore().read(path).body.startswith("Fehlerbehebung")


def test_load_tree_requires_title():
    with pytest.raises(DocumentError):
        load_tree('{"identity": {"kind": "pending"}}', "inline")


def test_tagged_identities_in_json():
    text = dump_tree(linked(3, comments=[Comment(identity=Linked(id=2), body="c")]))
    assert '"kind": "linked"' in text
    assert '"kind": "body"' in text


class TestPathMapper:
    def test_document_for(self, tmp_path: Path):
        assert PathMapper(tmp_path).document_for(42) == tmp_path / "42.json"

    def test_baseline_key_relative(self, tmp_path: Path):
        mapper = PathMapper(tmp_path / "tickets")
        assert mapper.baseline_key(tmp_path / "tickets" / "team" / "42.json") == "team/42.json"

    def test_baseline_key_outside_data_dir(self, tmp_path: Path):
        mapper = PathMapper(tmp_path / "tickets")
        key = mapper.baseline_key(tmp_path / "elsewhere" / "7.json")
        assert not key.startswith("/")
        assert key.endswith("elsewhere/7.json")
