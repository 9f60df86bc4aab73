"""Test doubles and helpers shared by the test modules."""

import asyncio
import json
import shutil
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from backends.errors import AcquisitionError

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
requires_rg = pytest.mark.skipif(shutil.which("rg") is None, reason="rg not installed")


def rg_line(kind: str, path: str = "a.ts", line_number: int = 1, text: str = "") -> bytes:
    """Build one line of ``rg --json`` output."""
    if kind == "match":
        record = {
            "type": "match",
            "data": {
                "path": {"text": path},
                "lines": {"text": text},
                "line_number": line_number,
                "absolute_offset": 0,
                "submatches": [],
            },
        }
    elif kind == "context":
        record = {
            "type": "context",
            "data": {
                "path": {"text": path},
                "lines": {"text": text},
                "line_number": line_number,
                "absolute_offset": 0,
                "submatches": [],
            },
        }
    elif kind == "summary":
        record = {"data": {"elapsed_total": {"secs": 0, "nanos": 1}}, "type": "summary"}
    else:
        record = {"type": kind, "data": {"path": {"text": path}}}
    return json.dumps(record).encode() + b"\n"


class FakeProcess:
    """Stands in for ``asyncio.subprocess.Process``.

    With ``finished=False`` the process keeps running after its output until
    ``kill`` is called, like a search that still has matches to report.
    """

    def __init__(
        self,
        stdout: List[bytes],
        returncode: int = 0,
        stderr: bytes = b"",
        finished: bool = True,
    ) -> None:
        self.stdout = asyncio.StreamReader()
        for chunk in stdout:
            self.stdout.feed_data(chunk)
        self.stderr = asyncio.StreamReader()
        if stderr:
            self.stderr.feed_data(stderr)
        self.stderr.feed_eof()

        self.returncode: Optional[int] = None
        self.killed = False
        self._exit_code = returncode
        self._exited = asyncio.Event()
        if finished:
            self.stdout.feed_eof()
            self._exited.set()

    def kill(self) -> None:
        self.killed = True
        self._exit_code = -9
        self.stdout.feed_eof()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        self.returncode = self._exit_code
        return self.returncode

    async def communicate(self):
        stdout = await self.stdout.read()
        stderr = await self.stderr.read()
        await self.wait()
        return stdout, stderr


class SubprocessRecorder:
    """Replacement for ``asyncio.create_subprocess_exec`` that records calls."""

    def __init__(self) -> None:
        self.calls: List[dict] = []
        self.processes: List[FakeProcess] = []
        self._responses: List[Callable[[], FakeProcess]] = []

    def respond(self, stdout: List[bytes], **kwargs) -> None:
        self._responses.append(lambda: FakeProcess(stdout, **kwargs))

    def fail(self, error: Exception) -> None:
        def raise_error():
            raise error

        self._responses.append(raise_error)

    async def __call__(self, program, *args, **kwargs):
        self.calls.append({"program": program, "args": list(args), "kwargs": kwargs})
        process = self._responses.pop(0)()
        self.processes.append(process)
        return process


class FakeGitClient:
    """Git client double serving a prepared directory instead of cloning."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.clone_calls = 0
        self.pull_calls = 0
        self.clone_error: Optional[Exception] = None
        self.pull_failures = 0
        self.on_pull: Optional[Callable[[Path], None]] = None
        self.removed = False
        self.release = asyncio.Event()
        self.release.set()

    @asynccontextmanager
    async def clone(self, url: str):
        self.clone_calls += 1
        await self.release.wait()
        if self.clone_error is not None:
            raise self.clone_error
        try:
            yield str(self.directory)
        finally:
            self.removed = True

    async def pull(self, directory: str) -> None:
        self.pull_calls += 1
        if self.pull_failures > 0:
            self.pull_failures -= 1
            raise AcquisitionError("git pull exited with code 1: could not resolve host")
        if self.on_pull is not None:
            self.on_pull(Path(directory))


