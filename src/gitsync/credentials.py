"""Credential resolution for fetches over SSH and HTTPS.

The backend hands us the URL it is connecting to and the set of mechanisms
the remote accepts; we walk a fixed, ordered chain of steps and return the
first credential the backend's credential machinery accepts.

Chains:

    SSH:   agent -> each profile key in order -> default
    HTTPS: credential helper -> token env vars in order -> default

Each step is independent. A failing step is recorded as a
``CredentialAttempt`` and the chain moves on; only the collective failure
(``NoCredentialsAvailableError``) is raised. Per-step reasons are logged at
DEBUG and available from ``trace()`` but are not folded into the error.
"""

from __future__ import annotations

import enum
import os
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlsplit

from .backends import BackendError, Credential, CredentialProvider, CredentialType
from .errors import AuthError, InvalidConfigurationError, NoCredentialsAvailableError
from .observability import log_debug, log_warning
from .ssh import SshCredentialProfile, public_key_for

DEFAULT_USERNAME = "git"

# Priority order: first variable found wins
DEFAULT_TOKEN_ENV_VARS: Tuple[str, ...] = ("GITHUB_TOKEN", "GH_TOKEN", "GITHUB_ACCESS_TOKEN")

_HELPER_KEY = re.compile(r"^credential\.(.+\.)?helper$")
_SCP_LIKE = re.compile(r"^(?:(?P<user>[^@/]+)@)?(?P<host>[^:/]+):(?!//)")

_helper_warning_lock = threading.Lock()
_helper_warning_emitted = False


class Transport(str, enum.Enum):
    SSH = "ssh"
    HTTPS = "https"
    OTHER = "other"


@dataclass(frozen=True)
class RemoteEndpoint:
    """A remote URL and what can be derived from it."""

    url: str

    @property
    def transport(self) -> Transport:
        lowered = self.url.lower()
        if lowered.startswith("https://"):
            return Transport.HTTPS
        if lowered.startswith(("ssh://", "git+ssh://", "ssh+git://")):
            return Transport.SSH
        if "://" not in self.url and _SCP_LIKE.match(self.url) and not _looks_like_windows_path(self.url):
            return Transport.SSH
        return Transport.OTHER

    @property
    def username(self) -> Optional[str]:
        if "://" in self.url:
            return urlsplit(self.url).username
        match = _SCP_LIKE.match(self.url)
        if match:
            return match.group("user")
        return None

    @property
    def is_https(self) -> bool:
        return self.transport is Transport.HTTPS


def _looks_like_windows_path(url: str) -> bool:
    return len(url) > 1 and url[1] == ":" and url[0].isalpha()


class AttemptOutcome(str, enum.Enum):
    SUCCEEDED = "succeeded"
    NOT_APPLICABLE = "not_applicable"
    FAILED = "failed"


@dataclass(frozen=True)
class CredentialAttempt:
    """One step of a resolution. Transient; never persisted."""

    mechanism: str
    outcome: AttemptOutcome
    detail: Optional[str] = None


@dataclass(frozen=True)
class _Request:
    url: str
    username: Optional[str]
    allowed: CredentialType

    @property
    def effective_username(self) -> str:
        return self.username or DEFAULT_USERNAME


@dataclass(frozen=True)
class _Step:
    """A capability-checked credential step.

    ``attempt`` returns a credential, returns None when the step has nothing
    to offer (not applicable), or raises ``AuthError`` when it tried and
    failed.
    """

    mechanism: str
    requires: CredentialType
    attempt: Callable[[_Request], Optional[Credential]]
    enabled: bool = True


def has_credential_helper(config: Mapping[str, str]) -> bool:
    return any(_HELPER_KEY.match(key) and value for key, value in config.items())


def _warn_missing_helper_once() -> None:
    global _helper_warning_emitted
    with _helper_warning_lock:
        if _helper_warning_emitted:
            return
        _helper_warning_emitted = True
    log_warning(
        "No git credential helpers configured. Consider setting one up: "
        "git config --global credential.helper store | cache | osxkeychain | manager-core"
    )


def reset_helper_warning() -> None:
    """Re-arm the one-shot credential helper warning (tests)."""
    global _helper_warning_emitted
    with _helper_warning_lock:
        _helper_warning_emitted = False


class CredentialResolver:
    """Resolve one credential for a URL from an SSH profile and the environment.

    Args:
        profile: SSH key/agent profile (used for non-HTTPS URLs)
        provider: The backend's credential machinery
        token_env_vars: Ordered token variables for the HTTPS fallback
        environ: Environment mapping (defaults to ``os.environ``)
    """

    def __init__(
        self,
        profile: SshCredentialProfile,
        provider: CredentialProvider,
        *,
        token_env_vars: Sequence[str] = DEFAULT_TOKEN_ENV_VARS,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.profile = profile
        self.provider = provider
        self.token_env_vars = tuple(token_env_vars)
        self._environ = environ

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve(
        self,
        url: str,
        allowed: CredentialType,
        username: Optional[str] = None,
    ) -> Credential:
        """Return the first credential the chain for ``url`` produces.

        Raises:
            NoCredentialsAvailableError: Every step was skipped or failed
        """
        credential, _attempts = self.trace(url, allowed, username)
        if credential is None:
            endpoint = RemoteEndpoint(url)
            raise NoCredentialsAvailableError(url, "https" if endpoint.is_https else "ssh")
        return credential

    def trace(
        self,
        url: str,
        allowed: CredentialType,
        username: Optional[str] = None,
    ) -> Tuple[Optional[Credential], List[CredentialAttempt]]:
        """Run the chain and return the credential (or None) plus every attempt made."""
        endpoint = RemoteEndpoint(url)
        request = _Request(url=url, username=username or endpoint.username, allowed=allowed)
        steps = self._https_chain() if endpoint.is_https else self._ssh_chain()

        attempts: List[CredentialAttempt] = []
        for step in steps:
            if not step.enabled or not (step.requires & allowed):
                attempts.append(CredentialAttempt(step.mechanism, AttemptOutcome.NOT_APPLICABLE))
                continue
            try:
                credential = step.attempt(request)
            except (AuthError, BackendError) as exc:
                attempts.append(CredentialAttempt(step.mechanism, AttemptOutcome.FAILED, str(exc)))
                continue
            if credential is None:
                attempts.append(CredentialAttempt(step.mechanism, AttemptOutcome.NOT_APPLICABLE))
                continue
            attempts.append(CredentialAttempt(step.mechanism, AttemptOutcome.SUCCEEDED))
            self._log_attempts(url, attempts)
            return credential, attempts

        self._log_attempts(url, attempts)
        return None, attempts

    def callback(self) -> Callable[[str, Optional[str], CredentialType], Credential]:
        """Adapter matching the backend's ``CredentialCallback`` signature."""

        def _credentials(url: str, username_from_url: Optional[str], allowed: CredentialType) -> Credential:
            return self.resolve(url, allowed, username_from_url)

        return _credentials

    # ------------------------------------------------------------------
    # Chains
    # ------------------------------------------------------------------

    def _ssh_chain(self) -> List[_Step]:
        steps = [
            _Step("ssh-agent", CredentialType.SSH_KEY, self._from_agent, enabled=self.profile.ssh_agent),
        ]
        for key_path in self.profile.key_paths:
            steps.append(_Step(f"ssh-key:{key_path}", CredentialType.SSH_KEY, self._key_step(key_path)))
        steps.append(_Step("default", CredentialType.DEFAULT, self._default))
        return steps

    def _https_chain(self) -> List[_Step]:
        steps = [_Step("credential-helper", CredentialType.USERPASS_PLAINTEXT, self._from_helper)]
        for name in self.token_env_vars:
            steps.append(_Step(f"env:{name}", CredentialType.USERPASS_PLAINTEXT, self._token_step(name)))
        steps.append(_Step("default", CredentialType.DEFAULT, self._default))
        return steps

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _from_agent(self, request: _Request) -> Optional[Credential]:
        return self.provider.ssh_key_from_agent(request.effective_username)

    def _key_step(self, private_key: Path) -> Callable[[_Request], Optional[Credential]]:
        def attempt(request: _Request) -> Optional[Credential]:
            if not private_key.exists():
                return None
            return self.provider.ssh_key(
                request.effective_username, public_key_for(private_key), private_key
            )

        return attempt

    def _from_helper(self, request: _Request) -> Optional[Credential]:
        try:
            config = self.provider.read_global_config()
        except BackendError as exc:
            raise InvalidConfigurationError(f"cannot read git config: {exc}") from exc
        if not has_credential_helper(config):
            _warn_missing_helper_once()
        return self.provider.credential_helper(config, request.url, request.username)

    def _token_step(self, name: str) -> Callable[[_Request], Optional[Credential]]:
        def attempt(request: _Request) -> Optional[Credential]:
            token = self.environ.get(name)
            if not token:
                return None
            return self.provider.userpass_plaintext(request.effective_username, token)

        return attempt

    def _default(self, request: _Request) -> Optional[Credential]:
        return self.provider.default()

    @staticmethod
    def _log_attempts(url: str, attempts: Sequence[CredentialAttempt]) -> None:
        log_debug(
            "Credential resolution",
            url=url,
            attempts=[
                {"mechanism": a.mechanism, "outcome": a.outcome.value, "detail": a.detail}
                for a in attempts
            ],
        )
