"""Exceptions raised by the sync engine.

Conflicts are not exceptions: they come back as ``SyncOutcome`` data.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Action


class SyncError(Exception):
    """Base class for sync failures."""


class FetchError(SyncError):
    """Reading the remote tree failed; nothing local was touched."""

    def __init__(self, message: str, ticket_id: int | None = None):
        super().__init__(message)
        self.ticket_id = ticket_id


class PlanningError(SyncError):
    """The resolved tree cannot be turned into remote mutations."""


class DocumentError(SyncError):
    """A working document could not be read or parsed."""


class BaselineCommitError(SyncError):
    """Storing a baseline failed for a reason other than "nothing changed"."""


class PartialActionFailure(SyncError):
    """A remote mutation failed after some others had already been applied.

    Nothing is rolled back. ``completed`` lists every action that reached
    the remote, ``failed`` the one that broke, ``depth`` its batch index.
    """

    def __init__(
        self,
        completed: list[Action],
        failed: Action,
        depth: int,
        cause: BaseException,
    ):
        super().__init__(
            f"{failed.kind} at path {list(failed.path)} (depth {depth}) failed "
            f"after {len(completed)} completed action(s): {cause}"
        )
        self.completed = completed
        self.failed = failed
        self.depth = depth
        self.cause = cause
