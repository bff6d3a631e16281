"""In-memory backend for tests.

Models just enough of a repository to exercise the synchronizer, branch
locator and checkout engine: a shared commit graph, per-repository refs and
HEAD, remotes with their own branch tips, and a working-tree marker. No
files are written and no network is touched.
"""

from __future__ import annotations

import hashlib
import itertools
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from . import (
    BackendError,
    Credential,
    CredentialCallback,
    CredentialType,
    FetchHeadCallback,
    LOCAL_BRANCH_PREFIX,
    MergeDecision,
    Reference,
    ReferenceExistsError,
    Remote,
)
from ..credentials import RemoteEndpoint, Transport
from ..errors import (
    AgentConnectionFailedError,
    AuthenticationFailedError,
    KeyNotFoundError,
)


def _default_allowed(url: str) -> CredentialType:
    transport = RemoteEndpoint(url).transport
    if transport is Transport.HTTPS:
        return CredentialType.USERPASS_PLAINTEXT | CredentialType.DEFAULT
    if transport is Transport.SSH:
        return CredentialType.SSH_KEY | CredentialType.DEFAULT
    return CredentialType.NONE


class RecordingCredentialProvider:
    """Credential machinery that records every request.

    Args:
        agent_available: Whether ``ssh_key_from_agent`` succeeds
        rejected_keys: Private keys the "server" refuses
        helper_credentials: ``url -> (username, password)`` stored in the helper
        config: Flattened global git config returned by ``read_global_config``
        default_available: Whether ``default`` succeeds
    """

    def __init__(
        self,
        *,
        agent_available: bool = False,
        rejected_keys: Sequence[Path] = (),
        helper_credentials: Mapping[str, Tuple[str, str]] | None = None,
        config: Mapping[str, str] | None = None,
        default_available: bool = True,
        config_error: bool = False,
    ) -> None:
        self.agent_available = agent_available
        self.rejected_keys = {Path(p) for p in rejected_keys}
        self.helper_credentials = dict(helper_credentials or {})
        self.config = dict(config or {})
        self.default_available = default_available
        self.config_error = config_error
        self.calls: List[Tuple[str, ...]] = []

    def mechanisms(self) -> List[str]:
        return [call[0] for call in self.calls]

    def ssh_key_from_agent(self, username: str) -> Credential:
        self.calls.append(("agent", username))
        if not self.agent_available:
            raise AgentConnectionFailedError("SSH_AUTH_SOCK not set")
        return Credential.ssh_agent(username)

    def ssh_key(self, username: str, public_key: Path | None, private_key: Path) -> Credential:
        self.calls.append(("ssh_key", str(private_key)))
        if not Path(private_key).exists():
            raise KeyNotFoundError(private_key)
        if Path(private_key) in self.rejected_keys:
            raise AuthenticationFailedError(f"key {private_key} rejected")
        return Credential.ssh_key(username, private_key, public_key)

    def userpass_plaintext(self, username: str, password: str) -> Credential:
        self.calls.append(("userpass", username))
        return Credential.userpass(username, password)

    def credential_helper(
        self, config: Mapping[str, str], url: str, username: str | None
    ) -> Optional[Credential]:
        self.calls.append(("helper", url))
        stored = self.helper_credentials.get(url)
        if stored is None:
            return None
        return Credential.userpass(*stored)

    def default(self) -> Credential:
        self.calls.append(("default",))
        if not self.default_available:
            raise AuthenticationFailedError("default credentials unavailable")
        return Credential.default()

    def read_global_config(self) -> Mapping[str, str]:
        self.calls.append(("read_config",))
        if self.config_error:
            raise BackendError("global config unreadable")
        return dict(self.config)


@dataclass
class InMemoryRemote:
    """Server side of a remote: branch tips plus an optional auth check."""

    name: str
    url: str
    branches: Dict[str, str] = field(default_factory=dict)
    refspecs: Tuple[str, ...] = ()
    allowed: Optional[CredentialType] = None
    accepts: Optional[Callable[[Credential], bool]] = None
    unreachable: bool = False
    credentials_seen: List[Credential] = field(default_factory=list)
    fetch_count: int = 0

    def __post_init__(self) -> None:
        if not self.refspecs:
            self.refspecs = (f"+refs/heads/*:refs/remotes/{self.name}/*",)


@dataclass
class InMemoryRepository:
    path: Path
    refs: Dict[str, str] = field(default_factory=dict)
    head_ref: Optional[str] = "refs/heads/main"
    detached_at: Optional[str] = None
    remotes: Dict[str, InMemoryRemote] = field(default_factory=dict)
    worktree: Optional[str] = None
    dirty: bool = False
    fetch_head: List[Tuple[str, str, str, bool]] = field(default_factory=list)
    ref_updates: List[Tuple[str, Optional[str], str]] = field(default_factory=list)
    head_updates: List[str] = field(default_factory=list)
    checkouts: int = 0

    def write_ref(self, name: str, target: str) -> None:
        self.ref_updates.append((name, self.refs.get(name), target))
        self.refs[name] = target


class InMemoryBackend:
    """``GitBackend`` over plain dictionaries."""

    name = "memory"

    def __init__(self, credentials: RecordingCredentialProvider | None = None) -> None:
        self.credentials = credentials or RecordingCredentialProvider()
        self.parents: Dict[str, Tuple[str, ...]] = {}
        self.repositories: Dict[str, InMemoryRepository] = {}
        self.open_handles = 0
        self._counter = itertools.count(1)

    # ------------------------------------------------------------------
    # Fixture helpers
    # ------------------------------------------------------------------

    def commit(self, *parents: str) -> str:
        """Add a commit to the shared graph and return its id."""
        for parent in parents:
            if parent not in self.parents:
                raise BackendError(f"unknown parent commit {parent}")
        sha = hashlib.sha1(f"commit-{next(self._counter)}".encode()).hexdigest()
        self.parents[sha] = tuple(parents)
        return sha

    def add_repository(self, path: Path, *, branch: str = "main", target: str | None = None) -> InMemoryRepository:
        repo = InMemoryRepository(path=Path(path), head_ref=LOCAL_BRANCH_PREFIX + branch)
        if target is not None:
            repo.refs[LOCAL_BRANCH_PREFIX + branch] = target
            repo.worktree = target
        self.repositories[self._key(path)] = repo
        return repo

    def add_remote(self, repo: InMemoryRepository, name: str, url: str, **kwargs) -> InMemoryRemote:
        remote = InMemoryRemote(name=name, url=url, **kwargs)
        repo.remotes[name] = remote
        return remote

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        seen: Set[str] = set()
        stack = [descendant]
        while stack:
            current = stack.pop()
            if current == ancestor:
                return True
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self.parents.get(current, ()))
        return False

    @staticmethod
    def _key(path: Path) -> str:
        return str(Path(path))

    # ------------------------------------------------------------------
    # GitBackend
    # ------------------------------------------------------------------

    def open(self, path: Path) -> InMemoryRepository:
        try:
            repo = self.repositories[self._key(path)]
        except KeyError:
            raise BackendError(f"could not find repository at '{path}'") from None
        self.open_handles += 1
        return repo

    def close(self, handle: InMemoryRepository) -> None:
        self.open_handles -= 1

    def head(self, handle: InMemoryRepository) -> Reference:
        if handle.head_ref is None:
            if handle.detached_at is None:
                raise BackendError("HEAD is unset")
            return Reference("HEAD", handle.detached_at)
        target = handle.refs.get(handle.head_ref)
        if target is None:
            raise BackendError(f"reference '{handle.head_ref}' not found (unborn branch)")
        return Reference(handle.head_ref, target)

    def find_reference(self, handle: InMemoryRepository, name: str) -> Optional[Reference]:
        target = handle.refs.get(name)
        return Reference(name, target) if target is not None else None

    def create_branch(self, handle: InMemoryRepository, name: str, target: str) -> Reference:
        refname = LOCAL_BRANCH_PREFIX + name
        if refname in handle.refs:
            raise ReferenceExistsError(f"a branch named '{name}' already exists")
        if target not in self.parents:
            raise BackendError(f"unknown commit {target}")
        handle.write_ref(refname, target)
        return Reference(refname, target)

    def set_head(self, handle: InMemoryRepository, refname: str) -> None:
        if refname not in handle.refs:
            raise BackendError(f"reference '{refname}' not found")
        handle.head_ref = refname
        handle.detached_at = None
        handle.head_updates.append(refname)

    def force_checkout_head(self, handle: InMemoryRepository) -> None:
        handle.worktree = self.head(handle).target
        handle.dirty = False
        handle.checkouts += 1

    def find_remote(self, handle: InMemoryRepository, name: str) -> Remote:
        try:
            remote = handle.remotes[name]
        except KeyError:
            raise BackendError(f"remote '{name}' does not exist") from None
        return Remote(name=remote.name, url=remote.url, refspecs=remote.refspecs)

    def fetch(
        self,
        handle: InMemoryRepository,
        remote: Remote,
        refspecs: Sequence[str],
        credentials: CredentialCallback | None = None,
    ) -> None:
        server = handle.remotes[remote.name]
        if server.unreachable:
            raise BackendError(f"could not resolve host for '{server.url}'")

        allowed = server.allowed if server.allowed is not None else _default_allowed(server.url)
        if allowed:
            if credentials is None:
                raise BackendError("authentication required but no callback set")
            credential = credentials(server.url, RemoteEndpoint(server.url).username, allowed)
            server.credentials_seen.append(credential)
            if server.accepts is not None and not server.accepts(credential):
                raise BackendError(f"authentication failed for '{server.url}'")

        server.fetch_count += 1
        handle.fetch_head = []
        current = handle.head_ref
        for spec in refspecs or server.refspecs:
            src, dst = spec.lstrip("+").split(":", 1)
            for branch, sha in sorted(server.branches.items()):
                source = LOCAL_BRANCH_PREFIX + branch
                if not fnmatchcase(source, src):
                    continue
                destination = dst.replace("*", source[len(src) - 1:]) if "*" in src else dst
                if handle.refs.get(destination) != sha:
                    handle.write_ref(destination, sha)
                handle.fetch_head.append((source, server.url, sha, source == current))

    def fetchhead_foreach(self, handle: InMemoryRepository, callback: FetchHeadCallback) -> None:
        for ref_name, url, oid, is_merge in handle.fetch_head:
            if not callback(ref_name, url, oid, is_merge):
                break

    def merge_analysis(self, handle: InMemoryRepository, their_commit: str) -> MergeDecision:
        ours = self.head(handle).target
        if ours == their_commit or self.is_ancestor(their_commit, ours):
            return MergeDecision.UP_TO_DATE
        if self.is_ancestor(ours, their_commit):
            return MergeDecision.FAST_FORWARD
        return MergeDecision.DIVERGED

    def fast_forward(self, handle: InMemoryRepository, refname: str, target: str) -> None:
        if refname not in handle.refs:
            raise BackendError(f"reference '{refname}' not found")
        handle.write_ref(refname, target)
