"""Backend registry helpers."""

from __future__ import annotations

import os
from typing import Callable

from . import BackendError, GitBackend
from .gitpython import GitPythonBackend
from .memory import InMemoryBackend

ENV_BACKEND = "GITSYNC_BACKEND"
DEFAULT_BACKEND = "gitpython"

BackendFactory = Callable[[], GitBackend]

_REGISTRY: dict[str, BackendFactory] = {
    "gitpython": lambda: GitPythonBackend(),
    "memory": lambda: InMemoryBackend(),
}


def register_backend(name: str, factory: BackendFactory) -> None:
    """Register a backend factory."""
    _REGISTRY[name] = factory


def get_backend(name: str) -> GitBackend:
    """Instantiate a backend by name."""
    try:
        factory = _REGISTRY[name]
    except KeyError as exc:
        raise BackendError(f"Backend '{name}' is not registered") from exc
    return factory()


def list_backends() -> list[str]:
    """List registered backend names."""
    return sorted(_REGISTRY)


def resolve_backend(name: str | None = None) -> GitBackend:
    """Resolve backend by explicit name or GITSYNC_BACKEND env (default: gitpython)."""
    backend_name = name or os.environ.get(ENV_BACKEND, DEFAULT_BACKEND)
    return get_backend(backend_name)
