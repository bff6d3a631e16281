"""Backend contract for the version-control engine.

gitsync never touches objects, refs or the network directly. Everything goes
through a ``GitBackend``: one production implementation on top of GitPython
and one in-memory fake used by the test suite.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence, runtime_checkable

LOCAL_BRANCH_PREFIX = "refs/heads/"
REMOTE_BRANCH_PREFIX = "refs/remotes/"


class BackendError(Exception):
    """Base exception for backend failures."""


class ReferenceExistsError(BackendError):
    """Raised when creating a reference that already exists."""


class CredentialType(enum.Flag):
    """Authentication mechanisms a remote is willing to accept."""

    NONE = 0
    USERPASS_PLAINTEXT = enum.auto()
    SSH_KEY = enum.auto()
    DEFAULT = enum.auto()


class MergeDecision(str, enum.Enum):
    """Relationship between the local branch tip and the fetched tip."""

    UP_TO_DATE = "up_to_date"
    FAST_FORWARD = "fast_forward"
    DIVERGED = "diverged"


@dataclass(frozen=True)
class Credential:
    """A credential accepted by the backend's credential machinery.

    Only the provider that validated a credential is expected to build one;
    the constructors below mirror the mechanisms of ``CredentialType``.
    """

    kind: CredentialType
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    private_key: Optional[Path] = None
    public_key: Optional[Path] = None
    from_agent: bool = False

    @classmethod
    def ssh_agent(cls, username: str) -> "Credential":
        return cls(CredentialType.SSH_KEY, username=username, from_agent=True)

    @classmethod
    def ssh_key(cls, username: str, private_key: Path, public_key: Path | None = None) -> "Credential":
        return cls(
            CredentialType.SSH_KEY,
            username=username,
            private_key=Path(private_key),
            public_key=Path(public_key) if public_key is not None else None,
        )

    @classmethod
    def userpass(cls, username: str, password: str) -> "Credential":
        return cls(CredentialType.USERPASS_PLAINTEXT, username=username, password=password)

    @classmethod
    def default(cls) -> "Credential":
        return cls(CredentialType.DEFAULT)

    @property
    def mechanism(self) -> str:
        if self.kind == CredentialType.SSH_KEY:
            return "ssh-agent" if self.from_agent else "ssh-key"
        if self.kind == CredentialType.USERPASS_PLAINTEXT:
            return "userpass"
        return "default"


# (url, username_from_url, allowed_types) -> Credential
CredentialCallback = Callable[[str, Optional[str], CredentialType], Credential]

# (ref_name, remote_url, oid, is_merge) -> keep iterating
FetchHeadCallback = Callable[[str, str, str, bool], bool]


@dataclass(frozen=True)
class Reference:
    """A resolved reference: fully-qualified name and the commit it targets."""

    name: str
    target: str

    @property
    def branch_name(self) -> Optional[str]:
        """Short branch name for ``refs/heads/*``, None otherwise (e.g. detached HEAD)."""
        if self.name.startswith(LOCAL_BRANCH_PREFIX):
            return self.name[len(LOCAL_BRANCH_PREFIX):]
        return None

    @property
    def shorthand(self) -> str:
        for prefix in (LOCAL_BRANCH_PREFIX, REMOTE_BRANCH_PREFIX):
            if self.name.startswith(prefix):
                return self.name[len(prefix):]
        return self.name


@dataclass(frozen=True)
class Remote:
    """A configured remote."""

    name: str
    url: str
    refspecs: Sequence[str] = ()


@runtime_checkable
class CredentialProvider(Protocol):
    """Credential machinery of a backend.

    Every method either returns a usable ``Credential`` or raises an
    ``AuthError`` subclass (see ``gitsync.errors``). ``credential_helper``
    may also return None when the helper has nothing stored for the URL.
    """

    def ssh_key_from_agent(self, username: str) -> Credential:
        """Ask the running SSH agent for a credential."""

    def ssh_key(self, username: str, public_key: Path | None, private_key: Path) -> Credential:
        """Validate a key pair (or lone private key) and wrap it."""

    def userpass_plaintext(self, username: str, password: str) -> Credential:
        """Wrap a plaintext username/password pair."""

    def credential_helper(
        self, config: Mapping[str, str], url: str, username: str | None
    ) -> Optional[Credential]:
        """Query the configured git credential helpers for ``url``."""

    def default(self) -> Credential:
        """Ambient default credential (negotiated by the transport itself)."""

    def read_global_config(self) -> Mapping[str, str]:
        """Read global/system git config flattened to ``section[.sub].key`` keys."""


@runtime_checkable
class GitBackend(Protocol):
    """Capability interface consumed by the synchronizer and checkout engine.

    Handles are opaque: callers only pass them back to the same backend and
    must ``close`` them when done.
    """

    name: str
    credentials: CredentialProvider

    def open(self, path: Path) -> Any:
        """Open the repository at ``path``. Raises BackendError."""

    def close(self, handle: Any) -> None:
        """Release resources held by ``handle``."""

    def head(self, handle: Any) -> Reference:
        """Current HEAD. A detached HEAD is returned with name ``"HEAD"``."""

    def find_reference(self, handle: Any, name: str) -> Optional[Reference]:
        """Look up a fully-qualified reference; None when absent."""

    def create_branch(self, handle: Any, name: str, target: str) -> Reference:
        """Create ``refs/heads/<name>`` at ``target``. Never overwrites."""

    def set_head(self, handle: Any, refname: str) -> None:
        """Point HEAD at an existing fully-qualified reference."""

    def force_checkout_head(self, handle: Any) -> None:
        """Make index and working tree match HEAD, discarding local changes."""

    def find_remote(self, handle: Any, name: str) -> Remote:
        """Look up a configured remote. Raises BackendError when missing."""

    def fetch(
        self,
        handle: Any,
        remote: Remote,
        refspecs: Sequence[str],
        credentials: CredentialCallback | None = None,
    ) -> None:
        """Fetch ``refspecs`` (all configured refspecs when empty)."""

    def fetchhead_foreach(self, handle: Any, callback: FetchHeadCallback) -> None:
        """Walk the entries recorded by the last fetch until callback returns False."""

    def merge_analysis(self, handle: Any, their_commit: str) -> MergeDecision:
        """Classify HEAD against ``their_commit``."""

    def fast_forward(self, handle: Any, refname: str, target: str) -> None:
        """Move ``refname`` to ``target`` (caller guarantees descendant)."""


__all__ = [
    "BackendError",
    "Credential",
    "CredentialCallback",
    "CredentialProvider",
    "CredentialType",
    "FetchHeadCallback",
    "GitBackend",
    "LOCAL_BRANCH_PREFIX",
    "MergeDecision",
    "REMOTE_BRANCH_PREFIX",
    "Reference",
    "ReferenceExistsError",
    "Remote",
]
