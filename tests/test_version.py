"""
Tests for version module.

Covers __version__ and check_version_consistency() against a pyproject.toml
written to tmp_path.
"""

import re
from unittest.mock import patch

import pytest

import trac_issue_mirror
from trac_issue_mirror.version import check_version_consistency


@pytest.fixture
def pyproject(tmp_path):
    """Point check_version_consistency at tmp_path/pyproject.toml."""
    path = tmp_path / "pyproject.toml"
    with patch("trac_issue_mirror.version.Path") as mock_path_cls:
        mock_path_cls.return_value.parent.parent.parent.__truediv__.return_value = path
        yield path


def test_version_format():
    """__version__ matches X.Y.Z."""
    assert re.match(r"^\d+\.\d+\.\d+$", trac_issue_mirror.__version__)


class TestCheckVersionConsistency:
    def test_matching_versions(self, pyproject):
        pyproject.write_text(
            f'[project]\nversion = "{trac_issue_mirror.__version__}"\n'
        )
        is_consistent, message = check_version_consistency()
        assert is_consistent is True
        assert trac_issue_mirror.__version__ in message

    def test_mismatch(self, pyproject):
        pyproject.write_text('[project]\nversion = "99.99.99"\n')
        is_consistent, message = check_version_consistency()
        assert is_consistent is False
        assert "mismatch" in message.lower()
        assert "99.99.99" in message
        assert "pip install -e ." in message

    def test_missing_file(self, pyproject):
        is_consistent, message = check_version_consistency()
        assert is_consistent is False
        assert "Cannot find pyproject.toml" in message

    def test_malformed_toml(self, pyproject):
        pyproject.write_text("[project\nversion = ")
        is_consistent, message = check_version_consistency()
        assert is_consistent is False
        assert message.startswith("Failed to read version")

    def test_missing_version_key(self, pyproject):
        pyproject.write_text('[project]\nname = "trac-issue-mirror"\n')
        is_consistent, message = check_version_consistency()
        assert is_consistent is False
        assert "unknown" in message

