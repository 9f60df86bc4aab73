"""Tests for backends.git module."""

import os
import tempfile

import pytest

from backends.errors import AcquisitionError
from backends.git import GitClient
from helpers import requires_git


@pytest.mark.asyncio
class TestGitClientCommands:
    """Tests for the git commands issued by GitClient."""

    async def test_clone_arguments(self, subprocess_recorder):
        """clone targets a fresh temporary directory that is removed on exit."""
        subprocess_recorder.respond([])
        client = GitClient(git_path="/usr/bin/git")

        async with client.clone("https://example.com/repo.git") as directory:
            assert os.path.isdir(directory)
            assert os.path.basename(directory).startswith("repo-mirror-git-")

        call = subprocess_recorder.calls[0]
        assert call["program"] == "/usr/bin/git"
        assert call["args"] == ["clone", "https://example.com/repo.git", directory]
        assert call["kwargs"]["env"]["GIT_TERMINAL_PROMPT"] == "0"
        assert not os.path.exists(directory)

    async def test_shallow_clone(self, subprocess_recorder):
        """clone_depth adds --depth."""
        subprocess_recorder.respond([])
        async with GitClient(clone_depth=1).clone("https://example.com/repo.git") as directory:
            pass
        assert subprocess_recorder.calls[0]["args"][:3] == ["clone", "--depth", "1"]
        assert subprocess_recorder.calls[0]["args"][-1] == directory

    async def test_clone_failure_removes_directory(self, subprocess_recorder, monkeypatch):
        """A failed clone raises and leaves nothing behind."""
        created = []
        real_mkdtemp = tempfile.mkdtemp

        def mkdtemp(**kwargs):
            created.append(real_mkdtemp(**kwargs))
            return created[-1]

        monkeypatch.setattr(tempfile, "mkdtemp", mkdtemp)
        subprocess_recorder.respond([], returncode=128, stderr=b"fatal: repository not found\n")

        with pytest.raises(AcquisitionError) as exc_info:
            async with GitClient().clone("https://example.com/missing.git"):
                pytest.fail("clone should not succeed")

        assert "repository not found" in str(exc_info.value)
        assert not os.path.exists(created[0])

    async def test_spawn_failure(self, subprocess_recorder):
        """A missing git executable is an AcquisitionError wrapping the cause."""
        error = FileNotFoundError("git")
        subprocess_recorder.fail(error)
        with pytest.raises(AcquisitionError) as exc_info:
            await GitClient().pull("/repo")
        assert exc_info.value.cause is error

    async def test_pull_runs_in_checkout(self, subprocess_recorder):
        """pull runs git pull inside the checkout."""
        subprocess_recorder.respond([b"Already up to date.\n"])
        await GitClient().pull("/repo")

        call = subprocess_recorder.calls[0]
        assert call["args"] == ["pull"]
        assert call["kwargs"]["cwd"] == "/repo"


@requires_git
@pytest.mark.asyncio
class TestGitClientIntegration:
    """Tests against the real git binary."""

    async def test_clone_and_pull(self, origin_repo):
        """A clone sees the origin's files and pull brings in new commits."""
        client = GitClient()
        async with client.clone(origin_repo.url) as directory:
            with open(os.path.join(directory, "LLMS.md")) as f:
                assert f.read() == "version one\n"

            (origin_repo.path / "LLMS.md").write_text("version two\n")
            origin_repo.git("commit", "-q", "-am", "update")
            await client.pull(directory)

            with open(os.path.join(directory, "LLMS.md")) as f:
                assert f.read() == "version two\n"

        assert not os.path.exists(directory)

    async def test_failed_pull_keeps_checkout(self, origin_repo, tmp_path):
        """When the origin disappears, pull fails and the files stay."""
        client = GitClient()
        async with client.clone(origin_repo.url) as directory:
            os.rename(origin_repo.path, tmp_path / "moved")

            with pytest.raises(AcquisitionError):
                await client.pull(directory)

            with open(os.path.join(directory, "app.py")) as f:
                assert f.read() == "print('hello')\n"

    async def test_clone_of_missing_repository(self, tmp_path):
        """Cloning a path that isn't a repository fails."""
        with pytest.raises(AcquisitionError):
            async with GitClient().clone(str(tmp_path / "does-not-exist")):
                pass
