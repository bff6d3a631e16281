import pytest

from gitsync.backends import BackendError
from gitsync.backends.gitpython import GitPythonBackend
from gitsync.backends.memory import InMemoryBackend
from gitsync.backends.registry import (
    _REGISTRY,
    get_backend,
    list_backends,
    register_backend,
    resolve_backend,
)


def test_builtin_backends():
    assert list_backends() == ["gitpython", "memory"]
    assert isinstance(get_backend("gitpython"), GitPythonBackend)
    assert isinstance(get_backend("memory"), InMemoryBackend)


def test_factories_return_fresh_instances():
    assert get_backend("memory") is not get_backend("memory")


def test_unknown_backend():
    with pytest.raises(BackendError, match="not registered"):
        get_backend("libgit2")


def test_resolve_backend_default_and_env(monkeypatch):
    assert isinstance(resolve_backend(), GitPythonBackend)
    monkeypatch.setenv("GITSYNC_BACKEND", "memory")
    assert isinstance(resolve_backend(), InMemoryBackend)
    assert isinstance(resolve_backend("gitpython"), GitPythonBackend)


def test_register_backend(monkeypatch):
    monkeypatch.setitem(_REGISTRY, "custom", lambda: InMemoryBackend())
    assert "custom" in list_backends()
    register_backend("custom", lambda: GitPythonBackend())
    assert isinstance(get_backend("custom"), GitPythonBackend)
