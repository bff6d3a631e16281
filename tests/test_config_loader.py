"""Tests for config_loader module."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from gitsync.config_loader import (
    ConfigError,
    _apply_env_overlay,
    _deep_merge,
    _get_project_config_dir,
    clear_config_cache,
    get_config,
    get_config_paths,
    load_config,
)
from gitsync.config_schema import GitSyncConfig


@pytest.fixture
def project(tmp_path):
    project_dir = tmp_path / "project"
    (project_dir / ".gitsync").mkdir(parents=True)
    return project_dir


def write_config(directory: Path, text: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "config.toml"
    path.write_text(text)
    return path


class TestDeepMerge:
    """Tests for _deep_merge function."""

    def test_nested_merge(self):
        base = {"outer": {"a": 1, "b": 2}}
        override = {"outer": {"b": 3, "c": 4}}
        assert _deep_merge(base, override) == {"outer": {"a": 1, "b": 3, "c": 4}}

    def test_list_replacement(self):
        """Lists are replaced, not merged."""
        assert _deep_merge({"keys": ["a", "b"]}, {"keys": ["c"]}) == {"keys": ["c"]}

    def test_base_unchanged(self):
        base = {"a": 1}
        _deep_merge(base, {"a": 2})
        assert base == {"a": 1}

    def test_one_sided_sections_are_copied(self):
        override = {"ssh": {"keys": ["/k/one"]}}
        merged = _deep_merge({}, override)
        merged["ssh"]["keys"].append("/k/two")
        assert override == {"ssh": {"keys": ["/k/one"]}}


class TestEnvOverlay:
    def test_known_variables(self, monkeypatch):
        monkeypatch.setenv("GITSYNC_REMOTE", "upstream")
        monkeypatch.setenv("GITSYNC_SSH_AGENT", "false")
        result = _apply_env_overlay({"remote": {"name": "origin"}})
        assert result["remote"]["name"] == "upstream"
        assert result["ssh"]["agent"] == "false"

    def test_input_not_mutated(self, monkeypatch):
        monkeypatch.setenv("GITSYNC_REMOTE", "upstream")
        original = {"remote": {"name": "origin"}}
        _apply_env_overlay(original)
        assert original == {"remote": {"name": "origin"}}


class TestLoadConfig:
    def test_defaults(self, home, tmp_path):
        config = load_config(tmp_path, skip_env=True)
        assert config == GitSyncConfig()
        assert config.remote.name == "origin"
        assert config.backend.name == "gitpython"
        assert config.https.token_env_vars == ["GITHUB_TOKEN", "GH_TOKEN", "GITHUB_ACCESS_TOKEN"]
        assert config.ssh.keys == []

    def test_user_config(self, home, tmp_path):
        write_config(home / ".gitsync", '[remote]\nname = "upstream"\n')
        assert load_config(tmp_path, skip_env=True).remote.name == "upstream"

    def test_project_overrides_user(self, home, project):
        write_config(home / ".gitsync", '[remote]\nname = "upstream"\n[ssh]\nagent = false\n')
        write_config(project / ".gitsync", '[remote]\nname = "mirror"\n')

        config = load_config(project, skip_env=True)

        assert config.remote.name == "mirror"
        assert config.ssh.agent is False

    def test_project_found_from_subdirectory(self, home, project):
        write_config(project / ".gitsync", '[backend]\nname = "memory"\n')
        nested = project / "src" / "pkg"
        nested.mkdir(parents=True)

        assert _get_project_config_dir(nested) == project / ".gitsync"
        assert load_config(nested, skip_env=True).backend.name == "memory"

    def test_env_overrides_files(self, home, project, monkeypatch):
        write_config(project / ".gitsync", '[https]\ntoken_env_vars = ["A"]\n')
        monkeypatch.setenv("GITSYNC_TOKEN_ENV_VARS", "CI_TOKEN, GITHUB_TOKEN")
        monkeypatch.setenv("GITSYNC_SSH_KEYS", os.pathsep.join(["/k/one", "/k/two"]))

        with pytest.warns(UserWarning):
            config = load_config(project)

        assert config.https.token_env_vars == ["CI_TOKEN", "GITHUB_TOKEN"]
        assert config.ssh.keys == ["/k/one", "/k/two"]
        assert config.logging.disable_file is True

    def test_invalid_user_config_is_skipped(self, home, tmp_path):
        write_config(home / ".gitsync", "not = [valid")
        with pytest.warns(UserWarning, match="Skipping invalid user config"):
            config = load_config(tmp_path, skip_env=True)
        assert config.remote.name == "origin"

    def test_invalid_project_config_raises(self, home, project):
        write_config(project / ".gitsync", "not = [valid")
        with pytest.raises(ConfigError, match="Invalid project config"):
            load_config(project, skip_env=True)

    def test_validation_error(self, home, project):
        write_config(project / ".gitsync", '[logging]\nlevel = "LOUD"\n')
        with pytest.raises(ConfigError, match="validation failed"):
            load_config(project, skip_env=True)

    def test_log_level_case_insensitive(self, home, project):
        write_config(project / ".gitsync", '[logging]\nlevel = "debug"\n')
        assert load_config(project, skip_env=True).logging.level == "DEBUG"


class TestCache:
    def test_get_config_caches(self, home, project):
        clear_config_cache()
        try:
            write_config(project / ".gitsync", '[remote]\nname = "first"\n')
            assert get_config(project).remote.name == "first"

            write_config(project / ".gitsync", '[remote]\nname = "second"\n')
            assert get_config(project).remote.name == "first"
            assert get_config(project, force_reload=True).remote.name == "second"
        finally:
            clear_config_cache()

    def test_clear_config_cache(self, home, project):
        clear_config_cache()
        write_config(project / ".gitsync", '[remote]\nname = "first"\n')
        get_config(project)
        write_config(project / ".gitsync", '[remote]\nname = "second"\n')
        clear_config_cache()
        assert get_config(project).remote.name == "second"
        clear_config_cache()


def test_get_config_paths(home, project):
    paths = get_config_paths(project)
    assert paths["user_config"] == home / ".gitsync" / "config.toml"
    assert paths["project_config"] == project / ".gitsync" / "config.toml"
