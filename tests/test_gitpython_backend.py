"""Integration tests: real repositories over the local transport."""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest
from git import Repo

from gitsync import GitClient
from gitsync.backends import BackendError, Credential, GitBackend, MergeDecision
from gitsync.backends.gitpython import GitCredentialProvider, GitPythonBackend
from gitsync.backends.memory import InMemoryBackend
from gitsync.errors import (
    AgentConnectionFailedError,
    BranchNotFoundError,
    InvalidBranchError,
    KeyNotFoundError,
    MergeRequiredError,
    OpenFailedError,
    PassphraseRequiredError,
)
from gitsync.ssh import SshCredentialProfile

from test_ssh import write_openssh_key

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")


@pytest.fixture(autouse=True)
def git_identity(monkeypatch):
    monkeypatch.setenv("GIT_AUTHOR_NAME", "gitsync tests")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "tests@gitsync.invalid")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "gitsync tests")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "tests@gitsync.invalid")


def init_remote_repo(remote_path: Path) -> Repo:
    remote_path.mkdir(parents=True, exist_ok=True)
    repo = Repo.init(remote_path, bare=True)
    repo.git.symbolic_ref("HEAD", "refs/heads/main")
    return repo


def commit_file(repo: Repo, name: str, content: str, message: str) -> str:
    (Path(repo.working_tree_dir) / name).write_text(content)
    repo.index.add([name])
    return repo.index.commit(message).hexsha


def seed_remote_with_main(tmp_path: Path) -> tuple[Path, Repo]:
    """Create a bare remote plus a seed clone that pushes to it."""
    remote = tmp_path / "remote.git"
    init_remote_repo(remote)
    seed = Repo.init(tmp_path / "seed")
    commit_file(seed, "README.md", "seed\n", "seed")
    seed.git.branch("-M", "main")
    seed.create_remote("origin", remote.as_posix())
    seed.remotes.origin.push("main:main")
    return remote, seed


def clone(remote: Path, path: Path) -> Repo:
    return Repo.clone_from(remote.as_posix(), path)


def make_client() -> GitClient:
    profile = SshCredentialProfile(key_paths=(), known_hosts_path=Path("/nonexistent/known_hosts"), ssh_agent=False)
    return GitClient(profile, GitPythonBackend())


def test_backends_satisfy_protocol():
    assert isinstance(GitPythonBackend(), GitBackend)
    assert isinstance(InMemoryBackend(), GitBackend)


class TestPull:
    def test_fast_forward(self, tmp_path):
        remote, seed = seed_remote_with_main(tmp_path)
        work = clone(remote, tmp_path / "work")
        tip = commit_file(seed, "notes.txt", "v2\n", "second")
        seed.remotes.origin.push("main:main")

        result = make_client().pull(tmp_path / "work")

        assert result.decision is MergeDecision.FAST_FORWARD
        assert result.new_target == tip
        assert work.head.commit.hexsha == tip
        assert work.active_branch.name == "main"
        assert (tmp_path / "work" / "notes.txt").read_text() == "v2\n"

    def test_up_to_date(self, tmp_path):
        remote, seed = seed_remote_with_main(tmp_path)
        work = clone(remote, tmp_path / "work")
        before = work.head.commit.hexsha

        result = make_client().pull(tmp_path / "work")

        assert result.decision is MergeDecision.UP_TO_DATE
        assert work.head.commit.hexsha == before

    def test_diverged(self, tmp_path):
        remote, seed = seed_remote_with_main(tmp_path)
        work = clone(remote, tmp_path / "work")
        ours = commit_file(work, "local.txt", "mine\n", "local")
        commit_file(seed, "remote.txt", "theirs\n", "remote")
        seed.remotes.origin.push("main:main")

        with pytest.raises(MergeRequiredError) as excinfo:
            make_client().pull(tmp_path / "work")

        assert excinfo.value.branch == "main"
        assert work.head.commit.hexsha == ours
        assert not (tmp_path / "work" / "remote.txt").exists()

    def test_detached_head(self, tmp_path):
        remote, _seed = seed_remote_with_main(tmp_path)
        work = clone(remote, tmp_path / "work")
        work.git.checkout("--detach")

        with pytest.raises(InvalidBranchError):
            make_client().pull(tmp_path / "work")

    def test_not_a_repository(self, tmp_path):
        (tmp_path / "plain").mkdir()
        with pytest.raises(OpenFailedError):
            make_client().pull(tmp_path / "plain")


class TestCheckout:
    def test_remote_only_branch(self, tmp_path):
        remote, seed = seed_remote_with_main(tmp_path)
        work = clone(remote, tmp_path / "work")
        seed.git.checkout("-b", "feature")
        tip = commit_file(seed, "feature.txt", "f\n", "feature work")
        seed.remotes.origin.push("feature:feature")
        client = make_client()
        client.pull(tmp_path / "work")

        ref = client.checkout_branch(tmp_path / "work", "feature")

        assert ref.name == "refs/heads/feature"
        assert work.active_branch.name == "feature"
        assert work.heads.feature.commit.hexsha == tip
        assert (tmp_path / "work" / "feature.txt").exists()

    def test_discards_local_changes(self, tmp_path):
        remote, _seed = seed_remote_with_main(tmp_path)
        clone(remote, tmp_path / "work")
        (tmp_path / "work" / "README.md").write_text("scribbles\n")

        make_client().checkout_branch(tmp_path / "work", "main")

        assert (tmp_path / "work" / "README.md").read_text() == "seed\n"

    def test_unknown_branch(self, tmp_path):
        remote, _seed = seed_remote_with_main(tmp_path)
        work = clone(remote, tmp_path / "work")
        heads = sorted(h.name for h in work.heads)

        with pytest.raises(BranchNotFoundError):
            make_client().checkout_branch(tmp_path / "work", "ghost")

        assert sorted(h.name for h in work.heads) == heads


class TestBackendPrimitives:
    def test_find_remote_reads_refspecs(self, tmp_path):
        remote, _seed = seed_remote_with_main(tmp_path)
        clone(remote, tmp_path / "work")
        backend = GitPythonBackend()
        handle = backend.open(tmp_path / "work")
        try:
            found = backend.find_remote(handle, "origin")
            assert found.refspecs == ("+refs/heads/*:refs/remotes/origin/*",)
            with pytest.raises(BackendError):
                backend.find_remote(handle, "nope")
        finally:
            backend.close(handle)

    def test_fetchhead_foreach(self, tmp_path):
        remote, _seed = seed_remote_with_main(tmp_path)
        clone(remote, tmp_path / "work")
        backend = GitPythonBackend()
        handle = backend.open(tmp_path / "work")
        seen = []
        try:
            backend.fetch(handle, backend.find_remote(handle, "origin"), [])
            backend.fetchhead_foreach(handle, lambda *entry: seen.append(entry) or True)
        finally:
            backend.close(handle)
        ref_name, url, _oid, is_merge = seen[0]
        assert ref_name == "refs/heads/main"
        # git drops the ".git" suffix when recording the source
        assert remote.as_posix().startswith(url)
        assert is_merge is True

    def test_create_branch_never_overwrites(self, tmp_path):
        remote, _seed = seed_remote_with_main(tmp_path)
        work = clone(remote, tmp_path / "work")
        backend = GitPythonBackend()
        handle = backend.open(tmp_path / "work")
        try:
            with pytest.raises(BackendError):
                backend.create_branch(handle, "main", work.head.commit.hexsha)
        finally:
            backend.close(handle)

    def test_credential_environment(self):
        backend = GitPythonBackend()
        env = backend._credential_env(Credential.userpass("bob", "s3cret"))
        assert env["GIT_CONFIG_VALUE_0"] == ""
        assert env["GITSYNC_CRED_PASSWORD"] == "s3cret"
        assert "s3cret" not in env["GIT_CONFIG_VALUE_1"]

        env = backend._credential_env(Credential.ssh_key("git", Path("/keys/id ed25519")))
        assert env["GIT_SSH_COMMAND"].startswith("ssh -i '/keys/id ed25519'")
        assert "BatchMode=yes" in env["GIT_SSH_COMMAND"]

        assert backend._credential_env(Credential.ssh_agent("git")) == {"GIT_SSH_COMMAND": "ssh -o BatchMode=yes"}
        assert backend._credential_env(Credential.default()) == {}


class TestCredentialProvider:
    def test_agent_requires_socket(self):
        with pytest.raises(AgentConnectionFailedError):
            GitCredentialProvider(environ={}).ssh_key_from_agent("git")

    def test_ssh_key_checks(self, tmp_path):
        provider = GitCredentialProvider(environ={})
        with pytest.raises(KeyNotFoundError):
            provider.ssh_key("git", None, tmp_path / "absent")

        encrypted = write_openssh_key(tmp_path / "enc", cipher="aes256-ctr")
        with pytest.raises(PassphraseRequiredError):
            provider.ssh_key("git", None, encrypted)

        plain = write_openssh_key(tmp_path / "plain")
        with pytest.raises(KeyNotFoundError):
            provider.ssh_key("git", tmp_path / "plain.pub", plain)
        credential = provider.ssh_key("git", None, plain)
        assert credential.private_key == plain

    def test_read_global_config(self, home):
        (home / ".gitconfig").write_text(
            '[credential]\n\thelper = store\n[credential "https://example.com"]\n\tusername = bob\n'
        )
        config = GitCredentialProvider(environ={"XDG_CONFIG_HOME": str(home / ".config")}).read_global_config()
        assert config["credential.helper"] == "store"
        assert config["credential.https://example.com.username"] == "bob"
