"""Fast-forward-only pull.

State machine for one pull:

1. HEAD must be a named branch, else ``InvalidBranchError``.
2. The configured remote must exist, else ``PullFailedError``.
3. Fetch every configured refspec with a credentials callback backed by
   ``CredentialResolver``; transport and auth failures become
   ``PullFailedError``.
4. Compare the branch tip with ``refs/remotes/<remote>/<branch>``.
5. Up to date: nothing changes. Behind: move the branch, re-point HEAD and
   force the working tree to the new tip. Diverged: ``MergeRequiredError``
   and nothing changes.

The fast-forward sub-steps are not rolled back if a later one fails; the
branch pointer is as updated as the last step that succeeded.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .backends import (
    BackendError,
    GitBackend,
    MergeDecision,
    REMOTE_BRANCH_PREFIX,
    Reference,
)
from .branches import DEFAULT_REMOTE
from .credentials import CredentialResolver
from .errors import (
    AuthError,
    InvalidBranchError,
    MergeRequiredError,
    OpenFailedError,
    PullFailedError,
)
from .observability import log_debug, timeit


@dataclass(frozen=True)
class PullResult:
    """What a successful pull did."""

    branch: str
    decision: MergeDecision
    previous_target: str
    new_target: str

    @property
    def updated(self) -> bool:
        return self.previous_target != self.new_target


def _accept_all_fetch_heads(ref_name: str, remote_url: str, oid: str, is_merge: bool) -> bool:
    return True


class Synchronizer:
    """Pull engine.

    Args:
        backend: Backend used for every repository operation
        resolver: Credential resolver consulted during fetch
        remote: Name of the remote to pull from
    """

    def __init__(
        self,
        backend: GitBackend,
        resolver: CredentialResolver,
        remote: str = DEFAULT_REMOTE,
    ) -> None:
        self.backend = backend
        self.resolver = resolver
        self.remote = remote

    def pull(self, repo_path: Path) -> PullResult:
        """Fetch and fast-forward the current branch of ``repo_path``.

        Raises:
            OpenFailedError: Not a repository
            InvalidBranchError: HEAD is detached or unborn
            PullFailedError: Missing remote, fetch/auth failure or ref update failure
            MergeRequiredError: Local and remote histories diverged
        """
        repo_path = Path(repo_path)
        with timeit("git.pull", repo=str(repo_path), remote=self.remote) as info:
            try:
                handle = self.backend.open(repo_path)
            except BackendError as exc:
                raise OpenFailedError(repo_path, exc) from exc
            try:
                result = self._pull(handle, repo_path, info)
            except MergeRequiredError:
                info["outcome"] = "merge_required"
                raise
            finally:
                self.backend.close(handle)
            info["decision"] = result.decision.value
            info["updated"] = result.updated
            return result

    def _pull(self, handle: Any, repo_path: Path, info: dict) -> PullResult:
        head = self._current_branch(handle, repo_path)
        branch = head.branch_name
        info["branch"] = branch

        try:
            remote = self.backend.find_remote(handle, self.remote)
        except BackendError as exc:
            raise PullFailedError(repo_path, exc, retryable=False) from exc

        try:
            # Empty refspec list fetches everything configured for the remote
            self.backend.fetch(handle, remote, [], credentials=self.resolver.callback())
            self.backend.fetchhead_foreach(handle, _accept_all_fetch_heads)
        except (AuthError, BackendError) as exc:
            raise PullFailedError(repo_path, exc) from exc

        tracking_name = f"{REMOTE_BRANCH_PREFIX}{self.remote}/{branch}"
        tracking = self.backend.find_reference(handle, tracking_name)
        if tracking is None:
            raise PullFailedError(
                repo_path, BackendError(f"reference '{tracking_name}' not found after fetch"),
                retryable=False,
            )

        try:
            decision = self.backend.merge_analysis(handle, tracking.target)
        except BackendError as exc:
            raise PullFailedError(repo_path, exc) from exc
        log_debug("Merge analysis", branch=branch, local=head.target, remote=tracking.target, decision=decision.value)

        if decision is MergeDecision.UP_TO_DATE:
            return PullResult(branch, decision, head.target, head.target)

        if decision is MergeDecision.DIVERGED:
            raise MergeRequiredError(
                repo_path,
                branch=branch,
                local_target=head.target,
                remote_target=tracking.target,
            )

        try:
            self.backend.fast_forward(handle, head.name, tracking.target)
            self.backend.set_head(handle, head.name)
            self.backend.force_checkout_head(handle)
        except BackendError as exc:
            raise PullFailedError(repo_path, exc) from exc
        return PullResult(branch, decision, head.target, tracking.target)

    def _current_branch(self, handle: Any, repo_path: Path) -> Reference:
        try:
            head = self.backend.head(handle)
        except BackendError as exc:
            raise InvalidBranchError(repo_path) from exc
        if head.branch_name is None:
            raise InvalidBranchError(repo_path)
        return head

