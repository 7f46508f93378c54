"""Baseline persistence: the last tree state agreed with the remote.

A baseline is written exactly once per successful sync and read at the
start of the next one. Two interchangeable stores implement the
``BaselineStore`` protocol:

* ``JsonBaselineStore`` keeps one JSON snapshot per key, written
  atomically, with a normalised content hash so that storing an
  unchanged tree is detected and skipped.
* ``GitBaselineStore`` keeps snapshots as files in a git repository and
  reads the committed version back with ``git show``. Staging a tree
  that is already committed leaves the index clean; that is the benign
  "nothing to commit" case.

``commit_baseline`` returns False when there was nothing to commit and
raises ``BaselineCommitError`` on genuine storage failures.
"""

from __future__ import annotations

import hashlib
import json
import logging
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from ..file_handler import read_file_with_encoding, write_file
from .document import dump_tree, load_tree
from .errors import BaselineCommitError
from .models import Node

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 30
_FALLBACK_IDENTITY = ("trac-issue-mirror", "trac-issue-mirror@localhost")


class BaselineStore(Protocol):
    def read_baseline(self, key: str) -> Node | None: ...

    def commit_baseline(self, key: str, tree: Node, message: str) -> bool: ...


def content_hash(content: str) -> str:
    """Compute a normalised SHA-256 hex digest of *content*.

    Normalisation strips a BOM, unifies line endings, right-strips every
    line and drops trailing empty lines before hashing the UTF-8 bytes.
    """
    text = content.lstrip("\ufeff").replace("\r\n", "\n")
    lines = [line.rstrip() for line in text.split("\n")]
    while lines and lines[-1] == "":
        lines.pop()
    return hashlib.sha256("\n".join(lines).encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# JSON snapshots
# ---------------------------------------------------------------------------


class JsonBaselineStore:
    """One JSON snapshot file per key under ``state_dir``.

    Args:
        state_dir: Directory holding the snapshots (created on first commit).
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = state_dir

    def _snapshot_path(self, key: str) -> Path:
        return self._state_dir / f"{key}.baseline.json"

    def _load_record(self, key: str) -> dict | None:
        path = self._snapshot_path(key)
        if not path.exists():
            return None
        content, _ = read_file_with_encoding(path)
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise BaselineCommitError(f"Corrupt baseline {path}: {e}") from e

    def read_baseline(self, key: str) -> Node | None:
        record = self._load_record(key)
        if record is None:
            return None
        return load_tree(json.dumps(record["tree"]), str(self._snapshot_path(key)))

    def commit_baseline(self, key: str, tree: Node, message: str) -> bool:
        serialized = dump_tree(tree)
        digest = content_hash(serialized)

        previous = self._load_record(key)
        if previous is not None and previous.get("hash") == digest:
            logger.debug("Baseline %s unchanged, nothing to commit", key)
            return False

        record = {
            "version": 1,
            "key": key,
            "message": message,
            "committed_at": datetime.now(timezone.utc).isoformat(),
            "hash": digest,
            "tree": json.loads(serialized),
        }
        try:
            write_file(self._snapshot_path(key), json.dumps(record, indent=2) + "\n")
        except OSError as e:
            raise BaselineCommitError(f"Failed to store baseline {key}: {e}") from e
        logger.info("Committed baseline %s: %s", key, message)
        return True


# ---------------------------------------------------------------------------
# Git repository
# ---------------------------------------------------------------------------


class GitBaselineStore:
    """Snapshots committed to a git repository under ``repo_dir``.

    The repository is initialised on first commit if needed.
    """

    def __init__(self, repo_dir: Path) -> None:
        self._repo_dir = repo_dir

    def _git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        try:
            result = subprocess.run(
                ["git", "-C", str(self._repo_dir), *args],
                capture_output=True,
                text=True,
                timeout=GIT_TIMEOUT,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError) as e:
            raise BaselineCommitError(f"git {args[0]} failed: {e}") from e
        if check and result.returncode != 0:
            raise BaselineCommitError(
                f"git {' '.join(args)} failed: {result.stderr.strip()}"
            )
        return result

    def _is_repo(self) -> bool:
        if not self._repo_dir.exists():
            return False
        # an enclosing repository (e.g. the user's project) does not count
        toplevel = self._git("rev-parse", "--show-toplevel", check=False)
        if toplevel.returncode != 0:
            return False
        return Path(toplevel.stdout.strip()).resolve() == self._repo_dir.resolve()

    @staticmethod
    def _file_name(key: str) -> str:
        return f"{key}.baseline.json"

    def read_baseline(self, key: str) -> Node | None:
        if not self._is_repo():
            return None
        name = self._file_name(key)
        tracked = self._git("ls-files", "--", name, check=False)
        if tracked.returncode != 0 or not tracked.stdout.strip():
            return None
        # ./ makes the path relative to repo_dir rather than the repo root
        shown = self._git("show", f"HEAD:./{name}", check=False)
        if shown.returncode != 0:
            # staged but never committed
            return None
        return load_tree(shown.stdout, f"{self._repo_dir / name}@HEAD")

    def _identity_args(self) -> list[str]:
        configured = self._git("config", "user.email", check=False)
        if configured.returncode == 0 and configured.stdout.strip():
            return []
        name, email = _FALLBACK_IDENTITY
        return ["-c", f"user.name={name}", "-c", f"user.email={email}"]

    def commit_baseline(self, key: str, tree: Node, message: str) -> bool:
        if not self._is_repo():
            self._repo_dir.mkdir(parents=True, exist_ok=True)
            self._git("init", "--quiet")
            logger.info("Initialised baseline repository in %s", self._repo_dir)

        name = self._file_name(key)
        try:
            write_file(self._repo_dir / name, dump_tree(tree))
        except OSError as e:
            raise BaselineCommitError(f"Failed to write baseline {key}: {e}") from e

        self._git("add", "--", name)
        staged = self._git("diff", "--cached", "--quiet", "--", name, check=False)
        if staged.returncode == 0:
            logger.debug("Baseline %s unchanged, nothing to commit", key)
            return False

        self._git(*self._identity_args(), "commit", "--quiet", "-m", message, "--", name)
        logger.info("Committed baseline %s: %s", key, message)
        return True


def create_baseline_store(backend: str, state_dir: Path) -> BaselineStore:
    """Build the configured baseline store.

    Raises:
        ValueError: For an unknown backend name.
    """
    match backend:
        case "json":
            return JsonBaselineStore(state_dir)
        case "git":
            return GitBaselineStore(state_dir)
        case _:
            raise ValueError(f"Unknown baseline backend: {backend!r}")
