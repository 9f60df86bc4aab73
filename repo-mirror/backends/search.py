"""Search backend built on ripgrep's JSON line protocol."""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import suppress
from typing import AsyncIterator, List, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import ValidationError

from backends.errors import SearchError
from backends.models import MatchRecord, RgMatchLine, SearchQuery, rg_json_line_adapter

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# rg prints whole lines, minified sources can be very long
DEFAULT_LINE_LIMIT = 16 * 1024 * 1024


class AbstractSearchClient(ABC):
    """Abstract base class for search clients."""

    @abstractmethod
    def search(self, query: SearchQuery) -> AsyncIterator[MatchRecord]:
        """Search a checkout directory.

        Args:
            query: Pattern, directory and optional filters

        Returns:
            Lazy stream of matches in the order the tool reports them. Closing
            the stream early stops the search.

        Raises:
            SearchError: If the search cannot run or its output is malformed
        """


def decode_line(raw: bytes) -> Optional[MatchRecord]:
    """Decode one line of ``rg --json`` output.

    Returns:
        A match record for ``match`` lines, None for the other tags

    Raises:
        SearchError: If the line is not a valid protocol record
    """
    try:
        line = rg_json_line_adapter.validate_json(raw)
    except ValidationError as exc:
        raise SearchError(f"Malformed rg output line: {raw[:200]!r}", cause=exc) from exc

    if not isinstance(line, RgMatchLine):
        return None
    return MatchRecord(
        path=line.data.path.text,
        line_number=line.data.line_number,
        line=line.data.lines.text.rstrip(),
    )


class RipgrepSearchClient(AbstractSearchClient):
    """Ripgrep search client implementation."""

    def __init__(
        self,
        rg_path: str = "rg",
        context_lines: int = 3,
        line_limit: int = DEFAULT_LINE_LIMIT,
    ) -> None:
        """Initialize ripgrep client.

        Args:
            rg_path: Name or path of the rg executable
            context_lines: Lines of context requested around each match
            line_limit: Longest output line accepted from rg, in bytes
        """
        self.rg_path = rg_path
        self.context_lines = context_lines
        self.line_limit = line_limit

    def build_args(self, query: SearchQuery) -> List[str]:
        """Build the rg argument list for a query."""
        args = ["--json", "--context", str(self.context_lines)]
        if query.glob is not None:
            args.extend(["--glob", query.glob])
        if query.max_per_file is not None:
            args.extend(["--max-count", str(query.max_per_file)])
        args.extend(["--", query.pattern])
        return args

    async def search(self, query: SearchQuery) -> AsyncIterator[MatchRecord]:
        """Search using ripgrep.

        Output is decoded one line at a time while rg is still running. If the
        consumer closes the stream or the task is cancelled, rg is killed.
        """
        attributes = {"pattern": query.pattern, "directory": query.directory}
        if query.glob is not None:
            attributes["glob"] = query.glob
        span = tracer.start_span("Ripgrep.search", attributes=attributes)

        try:
            process = await asyncio.create_subprocess_exec(
                self.rg_path,
                *self.build_args(query),
                cwd=query.directory,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=self.line_limit,
            )
        except OSError as exc:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR))
            span.end()
            raise SearchError(f"Failed to start rg: {exc}", cause=exc) from exc

        stderr_task = asyncio.ensure_future(process.stderr.read())
        count = 0
        try:
            try:
                async for raw in process.stdout:
                    raw = raw.strip()
                    if not raw:
                        continue
                    match = decode_line(raw)
                    if match is None:
                        continue
                    count += 1
                    yield match
            except ValueError as exc:
                # StreamReader raises ValueError when a line exceeds the limit
                raise SearchError(f"Failed to read rg output: {exc}", cause=exc) from exc

            returncode = await process.wait()
            stderr = (await stderr_task).decode(errors="replace").strip()
            # 1 means "no matches"
            if returncode not in (0, 1):
                raise SearchError(f"rg exited with code {returncode}: {stderr}")
            if stderr:
                logger.debug(f"rg stderr for {query.pattern!r}: {stderr}")
        except SearchError as exc:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR))
            raise
        finally:
            if process.returncode is None:
                with suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
                logger.debug(f"Stopped rg for {query.pattern!r} after {count} matches")
            if not stderr_task.done():
                stderr_task.cancel()
            span.set_attribute("matches", count)
            span.end()
