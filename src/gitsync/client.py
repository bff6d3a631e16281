"""Two-operation façade: ``pull`` and ``checkout_branch``."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence

from .backends import BackendError, GitBackend, Reference
from .backends.registry import resolve_backend
from .branches import DEFAULT_REMOTE
from .checkout import CheckoutEngine
from .config_schema import GitSyncConfig
from .credentials import DEFAULT_TOKEN_ENV_VARS, CredentialResolver
from .errors import BackendOperationError
from .pull import PullResult, Synchronizer
from .ssh import SshCredentialProfile


def _backend_named(name: Optional[str]) -> GitBackend:
    try:
        return resolve_backend(name)
    except BackendError as exc:
        raise BackendOperationError(exc) from exc


class GitClient:
    """Pull and branch checkout for local working copies.

    Args:
        profile: SSH profile (default: ``~/.ssh`` discovery with the agent on)
        backend: Backend instance (default: ``GITSYNC_BACKEND`` or gitpython)
        remote: Remote to pull from and track branches of
        token_env_vars: Token variables consulted for HTTPS, in order

    Raises:
        HomeDirectoryNotFoundError: No profile given and the home directory
            cannot be determined
        BackendOperationError: The backend name is not registered
    """

    def __init__(
        self,
        profile: Optional[SshCredentialProfile] = None,
        backend: Optional[GitBackend] = None,
        *,
        remote: str = DEFAULT_REMOTE,
        token_env_vars: Sequence[str] = DEFAULT_TOKEN_ENV_VARS,
    ) -> None:
        self.profile = profile if profile is not None else SshCredentialProfile.from_environment()
        self.backend = backend if backend is not None else _backend_named(None)
        self.remote = remote
        self.resolver = CredentialResolver(
            self.profile,
            self.backend.credentials,
            token_env_vars=token_env_vars,
        )
        self.synchronizer = Synchronizer(self.backend, self.resolver, remote)
        self.checkout_engine = CheckoutEngine(self.backend, remote)

    @classmethod
    def from_environment(cls) -> "GitClient":
        return cls()

    @classmethod
    def from_config(cls, config: GitSyncConfig, backend: Optional[GitBackend] = None) -> "GitClient":
        """Build a client from loaded configuration."""
        return cls(
            profile=SshCredentialProfile.from_settings(config.ssh),
            backend=backend if backend is not None else _backend_named(config.backend.name),
            remote=config.remote.name,
            token_env_vars=config.https.token_env_vars,
        )

    def pull(self, path: Path) -> PullResult:
        """Fetch and fast-forward the current branch.

        Raises ``MergeRequiredError`` when local and remote diverged.
        """
        return self.synchronizer.pull(Path(path))

    def checkout_branch(self, path: Path, branch_name: str) -> Reference:
        """Switch to ``branch_name``, discarding uncommitted changes."""
        return self.checkout_engine.checkout(Path(path), branch_name)
