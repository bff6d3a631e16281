"""Tests for branch resolution against the in-memory backend."""

from __future__ import annotations

from pathlib import Path

import pytest

from gitsync.backends.memory import InMemoryBackend
from gitsync.branches import BranchLocator, BranchReference, is_valid_branch_name
from gitsync.errors import BranchNotFoundError, CheckoutFailedError

REPO = Path("/work/repo")


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def repo(backend):
    root = backend.commit()
    return backend.add_repository(REPO, target=root)


def test_branch_reference_forms():
    ref = BranchReference("feature/x", "upstream")
    assert ref.local == "refs/heads/feature/x"
    assert ref.remote_tracking == "refs/remotes/upstream/feature/x"


@pytest.mark.parametrize("name", ["main", "feature/x", "release-1.2", "user@host"])
def test_valid_branch_names(name):
    assert is_valid_branch_name(name)


@pytest.mark.parametrize(
    "name",
    ["", "-x", "a..b", "a b", "a~1", "a^", "a:b", "a?", "a*", "a[", "a\\b", "x.lock", "a/", "a.", ".hidden", "a//b", "@", "a@{1}"],
)
def test_invalid_branch_names(name):
    assert not is_valid_branch_name(name)


class TestLocateOrCreate:
    def test_local_branch_returned(self, backend, repo):
        locator = BranchLocator(backend)
        handle = backend.open(REPO)

        ref = locator.locate_or_create(handle, "main", REPO)

        assert ref.name == "refs/heads/main"
        assert repo.ref_updates == []

    def test_local_wins_over_remote(self, backend, repo):
        other = backend.commit(repo.refs["refs/heads/main"])
        repo.refs["refs/remotes/origin/main"] = other
        locator = BranchLocator(backend)

        ref = locator.locate_or_create(backend.open(REPO), "main", REPO)

        assert ref.target == repo.refs["refs/heads/main"]
        assert ref.target != other

    def test_remote_only_creates_one_local_branch(self, backend, repo):
        tip = backend.commit(repo.refs["refs/heads/main"])
        repo.refs["refs/remotes/origin/feature"] = tip
        locator = BranchLocator(backend)

        ref = locator.locate_or_create(backend.open(REPO), "feature", REPO)

        assert ref.name == "refs/heads/feature"
        assert ref.target == tip
        assert repo.ref_updates == [("refs/heads/feature", None, tip)]

    def test_other_remote(self, backend, repo):
        tip = repo.refs["refs/heads/main"]
        repo.refs["refs/remotes/upstream/dev"] = tip
        locator = BranchLocator(backend, remote="upstream")

        assert locator.locate_or_create(backend.open(REPO), "dev", REPO).target == tip

    def test_missing_everywhere(self, backend, repo):
        locator = BranchLocator(backend)
        before = dict(repo.refs)

        with pytest.raises(BranchNotFoundError) as excinfo:
            locator.locate_or_create(backend.open(REPO), "ghost", REPO)

        assert excinfo.value.branch == "ghost"
        assert excinfo.value.path == REPO
        assert repo.refs == before

    def test_invalid_name_rejected_before_lookup(self, backend, repo):
        locator = BranchLocator(backend)

        with pytest.raises(CheckoutFailedError) as excinfo:
            locator.locate_or_create(backend.open(REPO), "bad..name", REPO)

        assert isinstance(excinfo.value.cause, ValueError)
        assert not isinstance(excinfo.value, BranchNotFoundError)

    def test_locate_does_not_create(self, backend, repo):
        repo.refs["refs/remotes/origin/feature"] = repo.refs["refs/heads/main"]
        locator = BranchLocator(backend)

        assert locator.locate(backend.open(REPO), "feature") is None
        assert repo.ref_updates == []
