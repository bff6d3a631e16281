from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


def pytest_sessionstart(session):  # type: ignore[override]
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))
    # Ensure console scripts load in editable style as well
    os.environ.setdefault("PYTHONPATH", str(src))


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep test runs out of ~/.gitsync/logs and re-arm one-shot warnings."""
    monkeypatch.setenv("GITSYNC_LOG_DISABLE_FILE", "1")
    monkeypatch.setenv("GITSYNC_LOG_LEVEL", "INFO")
    monkeypatch.delenv("GITSYNC_BACKEND", raising=False)
    from gitsync.config_loader import clear_config_cache
    from gitsync.credentials import reset_helper_warning
    from gitsync.observability import configure_logging

    reset_helper_warning()
    clear_config_cache()
    yield
    reset_helper_warning()
    clear_config_cache()
    configure_logging()


@pytest.fixture
def home(tmp_path, monkeypatch):
    """Isolated home directory with an empty ~/.ssh."""
    home_dir = tmp_path / "home"
    (home_dir / ".ssh").mkdir(parents=True)
    monkeypatch.setenv("HOME", str(home_dir))
    monkeypatch.setenv("USERPROFILE", str(home_dir))
    return home_dir

