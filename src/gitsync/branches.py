"""Branch name resolution.

A branch may exist locally, as a remote-tracking reference, both, or
neither. ``BranchLocator`` turns a name into a local reference, creating
the local branch from its remote-tracking counterpart on first use.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .backends import (
    GitBackend,
    LOCAL_BRANCH_PREFIX,
    REMOTE_BRANCH_PREFIX,
    Reference,
    ReferenceExistsError,
)
from .errors import BranchNotFoundError, CheckoutFailedError
from .observability import log_debug

DEFAULT_REMOTE = "origin"

_FORBIDDEN = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")


def is_valid_branch_name(name: str) -> bool:
    """Apply the basic ``git check-ref-format --branch`` rules."""
    if not name or name == "@" or name.startswith("-"):
        return False
    if _FORBIDDEN.search(name) or ".." in name or "@{" in name or "//" in name:
        return False
    if name.startswith("/") or name.endswith(("/", ".")):
        return False
    for component in name.split("/"):
        if component.startswith(".") or component.endswith(".lock"):
            return False
    return True


@dataclass(frozen=True)
class BranchReference:
    """A branch name and its local and remote-tracking reference names."""

    name: str
    remote: str = DEFAULT_REMOTE

    @property
    def local(self) -> str:
        return LOCAL_BRANCH_PREFIX + self.name

    @property
    def remote_tracking(self) -> str:
        return f"{REMOTE_BRANCH_PREFIX}{self.remote}/{self.name}"


class BranchLocator:
    """Resolve branch names against a backend.

    Args:
        backend: Backend the handles belong to
        remote: Remote whose tracking references are consulted
    """

    def __init__(self, backend: GitBackend, remote: str = DEFAULT_REMOTE) -> None:
        self.backend = backend
        self.remote = remote

    def reference_for(self, branch_name: str) -> BranchReference:
        return BranchReference(branch_name, self.remote)

    def locate(self, handle: Any, branch_name: str) -> Optional[Reference]:
        """Return the local reference for ``branch_name`` if it exists."""
        return self.backend.find_reference(handle, self.reference_for(branch_name).local)

    def locate_or_create(
        self,
        handle: Any,
        branch_name: str,
        repo_path: Path | None = None,
    ) -> Reference:
        """Return the local branch, creating it from the remote-tracking ref if needed.

        Raises:
            CheckoutFailedError: The name is not a valid branch name
            BranchNotFoundError: Neither a local nor a remote-tracking ref exists
        """
        if not is_valid_branch_name(branch_name):
            raise CheckoutFailedError(
                branch_name, repo_path, ValueError(f"'{branch_name}' is not a valid branch name")
            )

        branch = self.reference_for(branch_name)
        local = self.backend.find_reference(handle, branch.local)
        if local is not None:
            return local

        tracking = self.backend.find_reference(handle, branch.remote_tracking)
        if tracking is None:
            raise BranchNotFoundError(branch_name, repo_path)

        try:
            created = self.backend.create_branch(handle, branch_name, tracking.target)
        except ReferenceExistsError:
            # Created between the lookup and now; use the existing branch
            existing = self.backend.find_reference(handle, branch.local)
            if existing is None:
                raise
            return existing
        log_debug(
            "Created local branch from remote-tracking ref",
            branch=branch_name,
            source=branch.remote_tracking,
            target=tracking.target,
        )
        return created
