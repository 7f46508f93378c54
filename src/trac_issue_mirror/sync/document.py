"""Working documents: the user's editable local copy of a ticket tree.

A working document is the tree serialized as indented JSON, one file per
root ticket. Reads go through charset detection so files saved by any
editor load; writes are atomic.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from ..file_handler import read_file_with_encoding, write_file
from .errors import DocumentError
from .models import Node

logger = logging.getLogger(__name__)

DOCUMENT_SUFFIX = ".json"


def dump_tree(tree: Node) -> str:
    return tree.model_dump_json(indent=2) + "\n"


def load_tree(text: str, source: str) -> Node:
    """Parse a serialized tree.

    Raises:
        DocumentError: If *text* is not a valid tree.
    """
    try:
        return Node.model_validate_json(text)
    except ValidationError as e:
        raise DocumentError(f"Malformed ticket tree in {source}: {e}") from e


class DocumentStore(Protocol):
    def read(self, path: Path) -> Node | None: ...

    def write(self, path: Path, tree: Node) -> None: ...


class JsonDocumentStore:
    """``DocumentStore`` persisting trees as JSON files."""

    def read(self, path: Path) -> Node | None:
        """Return the tree at *path*, or None if the file does not exist."""
        if not path.exists():
            return None
        content, encoding = read_file_with_encoding(path)
        logger.debug("Read %s (%s)", path, encoding)
        return load_tree(content, str(path))

    def write(self, path: Path, tree: Node) -> None:
        count = write_file(path, dump_tree(tree))
        logger.debug("Wrote %s (%d bytes)", path, count)


class PathMapper:
    """Maps root tickets to working documents and documents to baseline keys.

    Args:
        data_dir: Directory holding one working document per root ticket.
    """

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir

    def document_for(self, root_id: int) -> Path:
        return self.data_dir / f"{root_id}{DOCUMENT_SUFFIX}"

    def baseline_key(self, document: Path) -> str:
        """Stable key for *document*: its path relative to the data directory.

        Documents outside the data directory are keyed by their absolute path.
        """
        resolved = document.resolve()
        base = self.data_dir.resolve()
        if resolved.is_relative_to(base):
            return resolved.relative_to(base).as_posix()
        return resolved.as_posix().lstrip("/")
