"""Git backend that clones and updates the mirrored checkout."""

import asyncio
import logging
import os
import shutil
import tempfile
from contextlib import asynccontextmanager, suppress
from typing import AsyncIterator, List, Optional

from opentelemetry import trace

from backends.errors import AcquisitionError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class GitClient:
    """Runs the ``git`` executable against a local checkout."""

    def __init__(
        self,
        git_path: str = "git",
        temp_prefix: str = "repo-mirror-git-",
        clone_depth: Optional[int] = None,
    ) -> None:
        """Initialize git client.

        Args:
            git_path: Name or path of the git executable
            temp_prefix: Prefix for the temporary checkout directory
            clone_depth: Create a shallow clone with this many commits
        """
        self.git_path = git_path
        self.temp_prefix = temp_prefix
        self.clone_depth = clone_depth

    @asynccontextmanager
    async def clone(self, url: str) -> AsyncIterator[str]:
        """Clone a repository into a temporary directory.

        The directory only exists while the context is open. It is removed
        on exit, including when the clone fails or is cancelled.

        Args:
            url: Repository URL (or local path) to clone

        Yields:
            Path of the checkout directory

        Raises:
            AcquisitionError: If git cannot be started or exits non-zero
        """
        directory = tempfile.mkdtemp(prefix=self.temp_prefix)
        try:
            args = ["clone"]
            if self.clone_depth:
                args.extend(["--depth", str(self.clone_depth)])
            args.extend([url, directory])

            with tracer.start_as_current_span("Git.clone", attributes={"url": url}):
                await self._run(args)
            logger.info(f"Cloned {url} into {directory}")

            yield directory
        finally:
            shutil.rmtree(directory, ignore_errors=True)
            logger.info(f"Removed checkout {directory}")

    async def pull(self, directory: str) -> None:
        """Pull the latest changes into an existing checkout.

        On failure the checkout is left as it was.

        Raises:
            AcquisitionError: If git cannot be started or exits non-zero
        """
        with tracer.start_as_current_span("Git.pull", attributes={"directory": directory}):
            await self._run(["pull"], cwd=directory)

    async def _run(self, args: List[str], cwd: Optional[str] = None) -> str:
        """Run one git command and return its standard output."""
        env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
        try:
            process = await asyncio.create_subprocess_exec(
                self.git_path,
                *args,
                cwd=cwd,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise AcquisitionError(f"Failed to start git {args[0]}: {exc}", cause=exc) from exc

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            # Don't leave a clone running in the background
            with suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            raise

        if process.returncode != 0:
            message = stderr.decode(errors="replace").strip()
            raise AcquisitionError(
                f"git {args[0]} exited with code {process.returncode}: {message}"
            )
        return stdout.decode(errors="replace")
