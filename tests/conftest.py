"""Pytest configuration and shared fixtures."""

import asyncio
import os
import subprocess
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

# Add project paths
PROJECT_ROOT = Path(__file__).parent.parent
SOURCE_ROOT = PROJECT_ROOT / "repo-mirror"
sys.path.insert(0, str(SOURCE_ROOT))
sys.path.insert(0, str(Path(__file__).parent))

from helpers import FakeGitClient, SubprocessRecorder  # noqa: E402


@pytest.fixture
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def subprocess_recorder(monkeypatch):
    """Patch asyncio subprocess creation with a recorder."""
    recorder = SubprocessRecorder()
    monkeypatch.setattr(asyncio, "create_subprocess_exec", recorder)
    return recorder


@pytest.fixture
def checkout(tmp_path):
    """A directory laid out like a small repository checkout."""
    root = tmp_path / "checkout"
    (root / "src").mkdir(parents=True)
    (root / "docs").mkdir()
    (root / "LLMS.md").write_text("# Guide\nUse the source.\n")
    (root / "README.md").write_text("hello\n")
    (root / "src" / "main.py").write_text("def main():\n    return 42\n")
    (root / "src" / "util.py").write_text("VALUE = 1\n")
    (root / "docs" / "intro.md").write_text("intro\n")
    (root / ".hidden").write_text("secret\n")
    (root / "ten.txt").write_text("\n".join(f"line {i}" for i in range(1, 11)))
    return root


@pytest.fixture
def fake_git(checkout):
    """Git client double serving the checkout fixture."""
    return FakeGitClient(checkout)


@pytest.fixture
def origin_repo(tmp_path):
    """A real git repository with one commit, usable as a clone source."""
    path = tmp_path / "origin"
    path.mkdir()
    env = dict(
        os.environ,
        GIT_AUTHOR_NAME="Test",
        GIT_AUTHOR_EMAIL="test@example.com",
        GIT_COMMITTER_NAME="Test",
        GIT_COMMITTER_EMAIL="test@example.com",
    )

    def git(*args):
        subprocess.run(["git", *args], cwd=path, env=env, check=True, capture_output=True)

    git("init", "-q")
    (path / "LLMS.md").write_text("version one\n")
    (path / "app.py").write_text("print('hello')\n")
    git("add", ".")
    git("commit", "-q", "-m", "initial")
    return SimpleNamespace(path=path, url=str(path), git=git)
