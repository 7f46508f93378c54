"""Tests for file_handler module: path validation and encoding-aware read/write."""

from pathlib import Path
from unittest.mock import patch

import pytest

from trac_issue_mirror.file_handler import (
    read_file_with_encoding,
    validate_file_path,
    write_file,
)

# =============================================================================
# validate_file_path
# =============================================================================


class TestValidateFilePath:
    def test_valid_absolute_path(self, tmp_path):
        f = tmp_path / "1.json"
        f.write_text("{}")
        result = validate_file_path(str(f))
        assert isinstance(result, Path)
        assert result == f.resolve()

    def test_relative_path_raises(self):
        with pytest.raises(ValueError, match="must be absolute"):
            validate_file_path("tickets/1.json")

    def test_nonexistent_file_raises(self, tmp_path):
        with pytest.raises(ValueError, match="not found"):
            validate_file_path(str(tmp_path / "missing.json"))

    def test_directory_path_raises(self, tmp_path):
        with pytest.raises(ValueError, match="not a file"):
            validate_file_path(str(tmp_path))

    def test_symlink_resolves(self, tmp_path):
        real_file = tmp_path / "real.json"
        real_file.write_text("{}")
        link = tmp_path / "link.json"
        link.symlink_to(real_file)
        assert validate_file_path(str(link)) == real_file.resolve()


# =============================================================================
# read_file_with_encoding
# =============================================================================


class TestReadFileWithEncoding:
    def test_utf8(self, tmp_path):
        f = tmp_path / "doc.json"
        f.write_text('{"title": "Überarbeitung der Größenberechnung"}', encoding="utf-8")
        content, _encoding = read_file_with_encoding(f)
        assert "Größenberechnung" in content

    def test_ascii_reported_as_utf8(self, tmp_path):
        f = tmp_path / "doc.json"
        f.write_bytes(b'{"title": "plain"}')
        content, encoding = read_file_with_encoding(f)
        assert content == '{"title": "plain"}'
        assert encoding == "utf-8"

    def test_empty_file(self, tmp_path):
        f = tmp_path / "empty.json"
        f.write_bytes(b"")
        assert read_file_with_encoding(f) == ("", "utf-8")


# =============================================================================
# write_file
# =============================================================================


class TestWriteFile:
    def test_creates_parents_and_counts_bytes(self, tmp_path):
        target = tmp_path / "a" / "b" / "1.json"
        count = write_file(target, "héllo")
        assert target.read_text(encoding="utf-8") == "héllo"
        assert count == len("héllo".encode("utf-8"))

    def test_replaces_existing(self, tmp_path):
        target = tmp_path / "1.json"
        target.write_text("old")
        write_file(target, "new")
        assert target.read_text() == "new"

    def test_failed_write_leaves_original(self, tmp_path):
        """A failure before the rename keeps the old file and no temp file."""
        target = tmp_path / "1.json"
        target.write_text("old")
        with patch(
            "trac_issue_mirror.file_handler.os.replace",
            side_effect=OSError("disk full"),
        ):
            with pytest.raises(OSError, match="disk full"):
                write_file(target, "new")
        assert target.read_text() == "old"
        assert [p.name for p in tmp_path.iterdir()] == ["1.json"]
