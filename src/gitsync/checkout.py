"""Branch checkout.

Checkout is destructive by design: the working tree is forced to match the
new HEAD and uncommitted changes are discarded.
"""

from __future__ import annotations

from pathlib import Path

from .backends import BackendError, GitBackend, Reference
from .branches import DEFAULT_REMOTE, BranchLocator
from .errors import CheckoutFailedError, OpenFailedError
from .observability import timeit


class CheckoutEngine:
    """Switch a repository to a branch, creating it from the remote if needed."""

    def __init__(self, backend: GitBackend, remote: str = DEFAULT_REMOTE) -> None:
        self.backend = backend
        self.locator = BranchLocator(backend, remote)

    def checkout(self, repo_path: Path, branch_name: str) -> Reference:
        """Point HEAD at ``branch_name`` and force the working tree to match.

        Raises:
            OpenFailedError: The repository cannot be opened
            BranchNotFoundError: No local or remote-tracking branch by that name
            CheckoutFailedError: Any other failure while switching
        """
        repo_path = Path(repo_path)
        with timeit("git.checkout", repo=str(repo_path), branch=branch_name):
            try:
                handle = self.backend.open(repo_path)
            except BackendError as exc:
                raise OpenFailedError(repo_path, exc) from exc
            try:
                reference = self.locator.locate_or_create(handle, branch_name, repo_path)
                self.backend.set_head(handle, reference.name)
                self.backend.force_checkout_head(handle)
                return reference
            except CheckoutFailedError:
                raise
            except BackendError as exc:
                raise CheckoutFailedError(branch_name, repo_path, exc) from exc
            finally:
                self.backend.close(handle)
