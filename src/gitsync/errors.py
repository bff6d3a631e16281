"""Error taxonomy for gitsync.

Two tiers:

- ``AuthError``: SSH configuration and credential problems.
- ``GitError``: repository, reference and merge problems.

Every error renders a remediation hint through ``user_message()``. The
rendering is cosmetic; callers branch on the exception type (or on the
``retryable`` flag), never on the message text.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class GitSyncError(Exception):
    """Base exception for all gitsync failures."""

    retryable: bool = False

    def user_message(self) -> str:
        return str(self)


# ---------------------------------------------------------------------------
# Authentication tier
# ---------------------------------------------------------------------------


class AuthError(GitSyncError):
    """SSH or credential related failure."""


class HomeDirectoryNotFoundError(AuthError):
    def __init__(self) -> None:
        super().__init__("Home directory not found")

    def user_message(self) -> str:
        return "Home directory not found. Make sure your environment is properly configured (HOME is set)."


class SshDirectoryNotFoundError(AuthError):
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        super().__init__(f"SSH directory not found: {self.path}")

    def user_message(self) -> str:
        return f"SSH directory not found: {self.path}. Create it with: mkdir -p {self.path}"


class NoCredentialsAvailableError(AuthError):
    """Every mechanism in the credential chain was exhausted."""

    def __init__(self, url: str | None = None, transport: str = "ssh") -> None:
        self.url = url
        self.transport = transport
        if transport == "https":
            message = (
                "No HTTPS credentials found. Configure a git credential helper or set "
                "GITHUB_TOKEN for private repositories."
            )
        else:
            message = "No SSH credentials available (no usable keys found and SSH agent unavailable)"
        if url:
            message = f"{message} [{url}]"
        super().__init__(message)

    def user_message(self) -> str:
        if self.transport == "https":
            return (
                "No HTTPS credentials available. Configure a credential helper with: "
                "git config --global credential.helper store  (or export GITHUB_TOKEN)"
            )
        return (
            "No SSH credentials available. Generate SSH keys with: "
            'ssh-keygen -t ed25519 -C "your_email@example.com"'
        )


class KeyNotFoundError(AuthError):
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        super().__init__(f"SSH key not found: {self.path}")

    def user_message(self) -> str:
        return f"SSH key not found: {self.path}. Generate it with: ssh-keygen -t ed25519 -f {self.path}"


class InvalidKeyPermissionsError(AuthError):
    def __init__(self, path: Path, mode: Optional[int] = None) -> None:
        self.path = Path(path)
        self.mode = mode
        detail = f" (mode {mode:o})" if mode is not None else ""
        super().__init__(f"SSH key permissions invalid: {self.path}{detail}")

    def user_message(self) -> str:
        return f"SSH key has invalid permissions: {self.path}. Fix with: chmod 600 {self.path}"


class AuthenticationFailedError(AuthError):
    def __init__(self, details: str) -> None:
        self.details = details
        super().__init__(f"SSH authentication failed: {details}")

    def user_message(self) -> str:
        return (
            f"SSH authentication failed: {self.details}. "
            "Check your SSH keys and add them to the Git service."
        )


class AgentConnectionFailedError(AuthError):
    def __init__(self, details: str) -> None:
        self.details = details
        super().__init__(f"SSH agent connection failed: {details}")

    def user_message(self) -> str:
        return (
            f"SSH agent connection failed: {self.details}. "
            'Start SSH agent with: eval "$(ssh-agent -s)"'
        )


class PassphraseRequiredError(AuthError):
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        super().__init__(f"SSH key passphrase required: {self.path}")

    def user_message(self) -> str:
        return f"SSH key passphrase required: {self.path}. Add it to the SSH agent with: ssh-add {self.path}"


class InvalidConfigurationError(AuthError):
    def __init__(self, details: str) -> None:
        self.details = details
        super().__init__(f"SSH configuration invalid: {details}")

    def user_message(self) -> str:
        return f"SSH configuration invalid: {self.details}. Check your SSH configuration."


# ---------------------------------------------------------------------------
# Repository tier
# ---------------------------------------------------------------------------


class GitError(GitSyncError):
    """Repository, reference or merge failure.

    Attributes:
        path: Repository location the operation targeted
        cause: Underlying backend (or auth) error, if any
    """

    def __init__(self, message: str, path: Path | None = None, cause: BaseException | None = None):
        super().__init__(message)
        self.path = Path(path) if path is not None else None
        self.cause = cause


class OpenFailedError(GitError):
    def __init__(self, path: Path, cause: BaseException | None = None) -> None:
        super().__init__(f"Failed to open repository at {path}: {cause}", path, cause)

    def user_message(self) -> str:
        return f"Failed to open repository at {self.path}. Make sure it's a valid Git repository."


class PullFailedError(GitError):
    """Pull failed before the working copy could be updated.

    Transport and authentication failures are retryable. Structural ones
    (missing remote, no remote-tracking branch) are raised with
    ``retryable=False``.
    """

    def __init__(
        self,
        path: Path,
        cause: BaseException | None = None,
        *,
        retryable: bool = True,
    ) -> None:
        super().__init__(f"Failed to pull repository at {path}: {cause}", path, cause)
        self.retryable = retryable

    def user_message(self) -> str:
        if isinstance(self.cause, AuthError):
            return self.cause.user_message()
        return (
            f"Failed to pull updates for repository at {self.path}. "
            "Check your SSH keys and network connection."
        )


class InvalidBranchError(GitError):
    """HEAD is not a named branch (detached or otherwise unusable)."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"Invalid branch for repository at {path}", path)

    def user_message(self) -> str:
        return (
            f"Repository at {self.path} is not on a branch (detached HEAD). "
            "Check out a branch first."
        )


class MergeRequiredError(GitError):
    """Local and remote histories diverged; a human has to reconcile them.

    This is a control outcome, not a transient failure: retrying will not
    help until someone merges or rebases by hand.
    """

    def __init__(
        self,
        path: Path,
        branch: str | None = None,
        local_target: str | None = None,
        remote_target: str | None = None,
    ) -> None:
        super().__init__(f"Manual merge required for repository at {path}", path)
        self.branch = branch
        self.local_target = local_target
        self.remote_target = remote_target

    def user_message(self) -> str:
        branch = f" on branch '{self.branch}'" if self.branch else ""
        return f"Manual merge required for repository at {self.path}{branch}. Resolve conflicts manually."


class CheckoutFailedError(GitError):
    def __init__(self, branch: str, path: Path, cause: BaseException | None = None) -> None:
        super().__init__(f"Failed to checkout branch {branch} at {path}: {cause}", path, cause)
        self.branch = branch

    def user_message(self) -> str:
        return f"Failed to checkout branch '{self.branch}' at {self.path}. Check if the branch exists."


class BranchNotFoundError(CheckoutFailedError):
    """Branch exists neither locally nor as a remote-tracking reference."""

    def __init__(self, branch: str, path: Path) -> None:
        cause = LookupError(f"Branch '{branch}' not found locally or remotely")
        super().__init__(branch, path, cause)

    def user_message(self) -> str:
        return (
            f"Branch '{self.branch}' not found locally or remotely at {self.path}. "
            "Run a pull first to refresh remote-tracking branches."
        )


class BackendOperationError(GitError):
    """Generic backend failure outside the pull/checkout flows."""

    def __init__(self, cause: BaseException, path: Path | None = None) -> None:
        super().__init__(f"Git operation failed: {cause}", path, cause)
