"""Pytest fixtures for oh-my-ccg tests."""

import json
import stat
import sys
import textwrap
from pathlib import Path

import pytest

from ohmyccg.config import BackendSettings
from ohmyccg.jobs.process import ProcessTracker
from ohmyccg.state.manager import StateManager


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    """Empty project directory."""
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def state(workdir: Path) -> StateManager:
    return StateManager(workdir)


@pytest.fixture
def tracker() -> ProcessTracker:
    return ProcessTracker()


@pytest.fixture
def fast_settings() -> BackendSettings:
    """Backend settings with millisecond retry delays."""
    return BackendSettings(
        model="test-model",
        timeout=10_000,
        retry_count=2,
        retry_delay=1,
        retry_max_delay=2,
    )


@pytest.fixture
def make_cli(tmp_path: Path):
    """Write an executable Python script standing in for a model CLI.

    The body runs with ``sys`` and ``json`` imported. ``MODEL`` holds the
    value after ``--model``, if any.
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)

    def _make(body: str, name: str = "fake-cli") -> str:
        header = (
            f"#!{sys.executable}\n"
            "import json\n"
            "import sys\n"
            "MODEL = sys.argv[sys.argv.index('--model') + 1] if '--model' in sys.argv else ''\n"
        )
        path = bin_dir / name
        path.write_text(header + textwrap.dedent(body), encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return _make


@pytest.fixture
def write_project_config(workdir: Path):
    """Write ``.oh-my-ccg/config.json`` for the test project."""

    def _write(config: dict) -> Path:
        config_dir = workdir / ".oh-my-ccg"
        config_dir.mkdir(parents=True, exist_ok=True)
        path = config_dir / "config.json"
        path.write_text(json.dumps(config), encoding="utf-8")
        return path

    return _write
