"""Tests for error rendering and classification."""

from pathlib import Path

from gitsync.backends import BackendError
from gitsync.errors import (
    AgentConnectionFailedError,
    AuthError,
    BackendOperationError,
    BranchNotFoundError,
    CheckoutFailedError,
    GitError,
    HomeDirectoryNotFoundError,
    MergeRequiredError,
    NoCredentialsAvailableError,
    OpenFailedError,
    PullFailedError,
)


def test_tiers():
    assert issubclass(HomeDirectoryNotFoundError, AuthError)
    assert issubclass(MergeRequiredError, GitError)
    assert issubclass(BranchNotFoundError, CheckoutFailedError)
    assert not issubclass(MergeRequiredError, AuthError)


def test_retryable_flags():
    assert PullFailedError(Path("/r"), BackendError("timeout")).retryable is True
    assert PullFailedError(Path("/r"), BackendError("no remote"), retryable=False).retryable is False
    assert MergeRequiredError(Path("/r")).retryable is False
    assert CheckoutFailedError("main", Path("/r")).retryable is False


def test_pull_failed_carries_cause():
    cause = BackendError("could not resolve host")
    err = PullFailedError(Path("/repo"), cause)
    assert err.cause is cause
    assert err.path == Path("/repo")
    assert "network connection" in err.user_message()


def test_pull_failed_renders_auth_cause():
    err = PullFailedError(Path("/repo"), NoCredentialsAvailableError("https://x/y.git", "https"))
    assert err.user_message() == NoCredentialsAvailableError(transport="https").user_message()


def test_merge_required_context():
    err = MergeRequiredError(Path("/repo"), branch="main", local_target="a" * 40, remote_target="b" * 40)
    assert err.branch == "main"
    assert "branch 'main'" in err.user_message()
    assert "Resolve conflicts manually" in err.user_message()


def test_branch_not_found_message():
    err = BranchNotFoundError("feature", Path("/repo"))
    assert isinstance(err.cause, LookupError)
    assert "not found locally or remotely" in str(err)
    assert err.branch == "feature"


def test_open_failed_message():
    err = OpenFailedError(Path("/nowhere"), BackendError("not a git repository"))
    assert "valid Git repository" in err.user_message()


def test_agent_message_has_hint():
    assert "ssh-agent" in AgentConnectionFailedError("no socket").user_message()


def test_backend_operation_error():
    cause = BackendError("boom")
    err = BackendOperationError(cause)
    assert err.path is None
    assert err.cause is cause
    assert "boom" in str(err)
