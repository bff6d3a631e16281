"""Production backend on top of GitPython.

GitPython drives the ``git`` executable, so credentials cannot be handed to
the transport through an in-process callback the way libgit2 does it.
Instead the resolved credential is translated into environment for the
fetch subprocess:

- SSH key: ``GIT_SSH_COMMAND="ssh -i <key> -o IdentitiesOnly=yes -o BatchMode=yes"``
- SSH agent: ``GIT_SSH_COMMAND="ssh -o BatchMode=yes"`` (agent via ``SSH_AUTH_SOCK``)
- user/password: a one-shot credential helper injected with ``GIT_CONFIG_*``
  that reads the secret from the environment (never from argv)
- default: git's own configuration, prompts disabled

``GIT_TERMINAL_PROMPT=0`` is always set so a missing credential fails fast
instead of hanging on stdin.
"""

from __future__ import annotations

import configparser
import os
import re
import shlex
import subprocess
from pathlib import Path
from subprocess import TimeoutExpired
from typing import Dict, List, Mapping, Optional, Sequence

import git
from git import GitCommandError, GitConfigParser, InvalidGitRepositoryError, NoSuchPathError, Repo
from git.config import get_config_path

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
from ..credentials import RemoteEndpoint, Transport, has_credential_helper
from ..errors import (
    AgentConnectionFailedError,
    AuthenticationFailedError,
    KeyNotFoundError,
    PassphraseRequiredError,
)
from ..observability import log_debug
from ..ssh import key_requires_passphrase

# Prompts must never block a fetch
_BASE_ENV: Dict[str, str] = {
    "GIT_TERMINAL_PROMPT": "0",
    "GCM_INTERACTIVE": "never",
    "GIT_HTTP_LOW_SPEED_LIMIT": "1",
    "GIT_HTTP_LOW_SPEED_TIME": "30",
}

_ENV_USERNAME = "GITSYNC_CRED_USERNAME"
_ENV_PASSWORD = "GITSYNC_CRED_PASSWORD"
_INLINE_HELPER = (
    '!f() { test "$1" = get && printf "username=%s\\npassword=%s\\n" '
    f'"${_ENV_USERNAME}" "${_ENV_PASSWORD}"; }}; f'
)

_SECTION_WITH_SUBSECTION = re.compile(r'^(?P<name>\S+)\s+"(?P<sub>.*)"$')
_FETCH_HEAD_DESC = re.compile(r"^(?P<kind>branch|tag) '(?P<name>.+)' of (?P<url>.+)$")


def _flatten_config(parser: configparser.RawConfigParser) -> Dict[str, str]:
    flattened: Dict[str, str] = {}
    for section in parser.sections():
        match = _SECTION_WITH_SUBSECTION.match(section)
        if match:
            prefix = f"{match.group('name').lower()}.{match.group('sub')}"
        else:
            prefix = section.lower()
        for option, value in parser.items(section):
            flattened[f"{prefix}.{option.lower()}"] = str(value)
    return flattened


class GitCredentialProvider:
    """Credential machinery backed by ssh-agent, key files and ``git credential``.

    Args:
        environ: Environment to consult (defaults to ``os.environ``)
        timeout: Seconds to wait for ``ssh-add``/``git credential`` helpers
    """

    def __init__(self, environ: Mapping[str, str] | None = None, timeout: float = 30.0) -> None:
        self._environ = environ
        self.timeout = timeout

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    def _run(self, cmd: List[str], *, input_text: str | None = None, env: Mapping[str, str] | None = None):
        proc_env = dict(self.environ)
        if env:
            proc_env.update(env)
        return subprocess.run(
            cmd,
            input=input_text,
            capture_output=True,
            text=True,
            env=proc_env,
            timeout=self.timeout,
        )

    def ssh_key_from_agent(self, username: str) -> Credential:
        sock = self.environ.get("SSH_AUTH_SOCK")
        if not sock:
            raise AgentConnectionFailedError("SSH_AUTH_SOCK is not set")
        if not Path(sock).exists():
            raise AgentConnectionFailedError(f"agent socket {sock} does not exist")
        try:
            result = self._run(["ssh-add", "-l"])
        except FileNotFoundError as exc:
            raise AgentConnectionFailedError("ssh-add not found on PATH") from exc
        except TimeoutExpired as exc:
            raise AgentConnectionFailedError("ssh-add timed out") from exc
        if result.returncode == 1:
            raise AgentConnectionFailedError("agent holds no identities")
        if result.returncode != 0:
            detail = (result.stderr or "").strip() or f"ssh-add exited {result.returncode}"
            raise AgentConnectionFailedError(detail)
        return Credential.ssh_agent(username)

    def ssh_key(self, username: str, public_key: Path | None, private_key: Path) -> Credential:
        private_key = Path(private_key)
        if not private_key.is_file():
            raise KeyNotFoundError(private_key)
        if public_key is not None and not Path(public_key).is_file():
            raise KeyNotFoundError(Path(public_key))
        try:
            encrypted = key_requires_passphrase(private_key)
        except OSError as exc:
            raise AuthenticationFailedError(f"cannot read {private_key}: {exc}") from exc
        # No passphrase prompting: encrypted keys only work through the agent
        if encrypted:
            raise PassphraseRequiredError(private_key)
        return Credential.ssh_key(username, private_key, public_key)

    def userpass_plaintext(self, username: str, password: str) -> Credential:
        if not password:
            raise AuthenticationFailedError("empty password")
        return Credential.userpass(username, password)

    def credential_helper(
        self, config: Mapping[str, str], url: str, username: str | None
    ) -> Optional[Credential]:
        if not has_credential_helper(config):
            return None
        request = f"url={url}\n"
        if username:
            request += f"username={username}\n"
        try:
            result = self._run(
                ["git", "credential", "fill"],
                input_text=request + "\n",
                env={"GIT_TERMINAL_PROMPT": "0", "GIT_ASKPASS": "", "SSH_ASKPASS": ""},
            )
        except FileNotFoundError as exc:
            raise AuthenticationFailedError("git executable not found") from exc
        except TimeoutExpired as exc:
            raise AuthenticationFailedError("credential helper timed out") from exc
        if result.returncode != 0:
            return None

        values: Dict[str, str] = {}
        for line in result.stdout.splitlines():
            key, sep, value = line.partition("=")
            if sep:
                values[key] = value
        if values.get("username") and values.get("password"):
            return Credential.userpass(values["username"], values["password"])
        return None

    def default(self) -> Credential:
        return Credential.default()

    def read_global_config(self) -> Mapping[str, str]:
        xdg_home = self.environ.get("XDG_CONFIG_HOME") or os.path.expanduser("~/.config")
        candidates = [
            get_config_path("system"),
            os.path.join(xdg_home, "git", "config"),
            get_config_path("global"),
        ]
        paths = [p for p in candidates if os.path.isfile(p)]
        if not paths:
            return {}
        try:
            parser = GitConfigParser(paths, read_only=True)
            parser.read()
            return _flatten_config(parser)
        except (OSError, configparser.Error) as exc:
            raise BackendError(f"failed to read git config: {exc}") from exc


class GitPythonBackend:
    """``GitBackend`` driving the git executable through GitPython."""

    name = "gitpython"

    def __init__(
        self,
        credentials: GitCredentialProvider | None = None,
        *,
        fetch_timeout: float | None = None,
    ) -> None:
        self.credentials = credentials or GitCredentialProvider()
        self.fetch_timeout = fetch_timeout

    # ------------------------------------------------------------------
    # Repository access
    # ------------------------------------------------------------------

    def open(self, path: Path) -> Repo:
        try:
            return Repo(Path(path))
        except (InvalidGitRepositoryError, NoSuchPathError) as exc:
            raise BackendError(f"not a git repository: {path}") from exc

    def close(self, handle: Repo) -> None:
        handle.close()

    def head(self, handle: Repo) -> Reference:
        try:
            if handle.head.is_detached:
                return Reference("HEAD", handle.head.commit.hexsha)
            ref = handle.head.reference
            return Reference(ref.path, ref.commit.hexsha)
        except (ValueError, TypeError) as exc:
            raise BackendError(f"cannot resolve HEAD: {exc}") from exc

    def find_reference(self, handle: Repo, name: str) -> Optional[Reference]:
        try:
            sha = handle.git.rev_parse("--verify", "--quiet", f"{name}^{{commit}}")
        except GitCommandError:
            return None
        return Reference(name, sha.strip())

    def create_branch(self, handle: Repo, name: str, target: str) -> Reference:
        if self.find_reference(handle, LOCAL_BRANCH_PREFIX + name) is not None:
            raise ReferenceExistsError(f"a branch named '{name}' already exists")
        try:
            branch = handle.create_head(name, commit=target)
        except (GitCommandError, OSError, ValueError) as exc:
            raise BackendError(f"failed to create branch '{name}': {exc}") from exc
        return Reference(branch.path, branch.commit.hexsha)

    def set_head(self, handle: Repo, refname: str) -> None:
        if self.find_reference(handle, refname) is None:
            raise BackendError(f"reference '{refname}' not found")
        try:
            handle.git.symbolic_ref("HEAD", refname)
        except GitCommandError as exc:
            raise BackendError(f"failed to set HEAD to {refname}: {exc.stderr or exc}") from exc

    def force_checkout_head(self, handle: Repo) -> None:
        try:
            handle.head.reset("HEAD", index=True, working_tree=True)
        except GitCommandError as exc:
            raise BackendError(f"failed to checkout HEAD: {exc.stderr or exc}") from exc

    # ------------------------------------------------------------------
    # Remotes
    # ------------------------------------------------------------------

    def find_remote(self, handle: Repo, name: str) -> Remote:
        try:
            remote = handle.remote(name)
            url = remote.url
        except (ValueError, configparser.Error) as exc:
            raise BackendError(f"remote '{name}' does not exist") from exc
        try:
            refspecs = tuple(handle.git.config("--get-all", f"remote.{name}.fetch").splitlines())
        except GitCommandError:
            refspecs = ()
        return Remote(name=name, url=url, refspecs=refspecs)

    def _credential_env(self, credential: Credential) -> Dict[str, str]:
        if credential.kind == CredentialType.SSH_KEY:
            if credential.from_agent or credential.private_key is None:
                return {"GIT_SSH_COMMAND": "ssh -o BatchMode=yes"}
            key = shlex.quote(str(credential.private_key))
            return {"GIT_SSH_COMMAND": f"ssh -i {key} -o IdentitiesOnly=yes -o BatchMode=yes"}
        if credential.kind == CredentialType.USERPASS_PLAINTEXT:
            return {
                # An empty value resets any helpers inherited from config files
                "GIT_CONFIG_COUNT": "2",
                "GIT_CONFIG_KEY_0": "credential.helper",
                "GIT_CONFIG_VALUE_0": "",
                "GIT_CONFIG_KEY_1": "credential.helper",
                "GIT_CONFIG_VALUE_1": _INLINE_HELPER,
                _ENV_USERNAME: credential.username or "",
                _ENV_PASSWORD: credential.password or "",
            }
        return {}

    def fetch(
        self,
        handle: Repo,
        remote: Remote,
        refspecs: Sequence[str],
        credentials: CredentialCallback | None = None,
    ) -> None:
        endpoint = RemoteEndpoint(remote.url)
        env = dict(_BASE_ENV)
        if endpoint.transport is Transport.SSH:
            env["GIT_SSH_COMMAND"] = os.environ.get("GIT_SSH_COMMAND", "ssh -o BatchMode=yes")

        if credentials is not None and endpoint.transport in (Transport.SSH, Transport.HTTPS):
            if endpoint.transport is Transport.HTTPS:
                allowed = CredentialType.USERPASS_PLAINTEXT | CredentialType.DEFAULT
            else:
                allowed = CredentialType.SSH_KEY | CredentialType.DEFAULT
            credential = credentials(remote.url, endpoint.username, allowed)
            env.update(self._credential_env(credential))
            log_debug("Fetch credential selected", remote=remote.name, mechanism=credential.mechanism)

        try:
            with handle.git.custom_environment(**env):
                handle.remote(remote.name).fetch(
                    refspec=list(refspecs) or None,
                    kill_after_timeout=self.fetch_timeout,
                )
        except GitCommandError as exc:
            detail = (exc.stderr or "").strip() or str(exc)
            raise BackendError(f"fetch from '{remote.name}' failed: {detail}") from exc
        except (AssertionError, ValueError) as exc:
            # GitPython asserts a fetch refspec is configured when none is passed
            raise BackendError(f"fetch from '{remote.name}' failed: {exc}") from exc

    def fetchhead_foreach(self, handle: Repo, callback: FetchHeadCallback) -> None:
        fetch_head = Path(handle.git_dir) / "FETCH_HEAD"
        if not fetch_head.exists():
            return
        for line in fetch_head.read_text(encoding="utf-8").splitlines():
            parts = line.split("\t", 2)
            if len(parts) != 3:
                continue
            oid, flag, description = parts
            match = _FETCH_HEAD_DESC.match(description)
            if match:
                prefix = LOCAL_BRANCH_PREFIX if match.group("kind") == "branch" else "refs/tags/"
                ref_name, url = prefix + match.group("name"), match.group("url")
            else:
                ref_name, url = "", description
            if not callback(ref_name, url, oid, flag != "not-for-merge"):
                break

    # ------------------------------------------------------------------
    # Merge analysis
    # ------------------------------------------------------------------

    def merge_analysis(self, handle: Repo, their_commit: str) -> MergeDecision:
        ours = self.head(handle).target
        try:
            if ours == their_commit or handle.is_ancestor(their_commit, ours):
                return MergeDecision.UP_TO_DATE
            if handle.is_ancestor(ours, their_commit):
                return MergeDecision.FAST_FORWARD
        except GitCommandError as exc:
            raise BackendError(f"merge analysis failed: {exc.stderr or exc}") from exc
        return MergeDecision.DIVERGED

    def fast_forward(self, handle: Repo, refname: str, target: str) -> None:
        try:
            git.Reference(handle, refname).set_commit(target, logmsg="gitsync: fast-forward")
        except (GitCommandError, OSError, ValueError) as exc:
            raise BackendError(f"failed to move {refname} to {target}: {exc}") from exc
