"""Repository service: search, read, glob and cached files over the mirror."""

import logging
from contextlib import aclosing, contextmanager
from functools import partial
from pathlib import PurePosixPath
from typing import AsyncIterator, Dict, Iterator, List, Optional

from backends.content_fetcher import AbstractContentFetcher, LocalContentFetcher
from backends.errors import RepositoryError, RepositoryMirrorError
from backends.git import GitClient
from backends.models import MatchRecord, SearchQuery
from backends.search import AbstractSearchClient, RipgrepSearchClient
from core.cache import ContentCache
from core.config import MirrorConfig
from core.session import RepositorySession

logger = logging.getLogger(__name__)


@contextmanager
def _reported() -> Iterator[None]:
    """Report backend failures as ``RepositoryError``."""
    try:
        yield
    except RepositoryMirrorError as exc:
        raise RepositoryError(exc) from exc


class RepositoryService:
    """Read-only access to the mirrored repository.

    All operations wait for the checkout, so they can be called right after
    startup. Every failure is raised as ``RepositoryError`` with the backend
    error as its ``cause``.
    """

    def __init__(
        self,
        session: RepositorySession,
        search_client: AbstractSearchClient,
        content_fetcher: AbstractContentFetcher,
        context_file: str = "LLMS.md",
        max_per_file: Optional[int] = None,
    ) -> None:
        """Initialize repository service.

        Args:
            session: Session owning the checkout
            search_client: Backend used for searches
            content_fetcher: Backend used for file reads and glob
            context_file: File served by ``cached_file`` when no name is given
            max_per_file: Default cap on matches per file for searches
        """
        self.session = session
        self.search_client = search_client
        self.content_fetcher = content_fetcher
        self.context_file = context_file
        self.max_per_file = max_per_file

        self._caches: Dict[str, ContentCache[str]] = {}
        session.add_refresh_listener(self.invalidate_cached_files)

    @classmethod
    def from_config(cls, config: MirrorConfig) -> "RepositoryService":
        """Build the service and its backends from configuration."""
        session = RepositorySession(
            url=config.repository_url,
            git_client=GitClient(git_path=config.git_path, clone_depth=config.clone_depth),
            refresh_interval=config.refresh_interval,
            retry_backoff=config.retry_backoff,
        )
        search_client = RipgrepSearchClient(
            rg_path=config.rg_path, context_lines=config.search_context_lines
        )
        return cls(
            session=session,
            search_client=search_client,
            content_fetcher=LocalContentFetcher(),
            context_file=config.context_file,
            max_per_file=config.search_max_per_file,
        )

    async def __aenter__(self) -> "RepositoryService":
        self.session.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.session.close()

    async def wait_ready(self) -> str:
        """Wait until the checkout exists and return its root."""
        with _reported():
            return await self.session.get_path()

    async def stream_search(
        self,
        pattern: str,
        glob: Optional[str] = None,
        max_per_file: Optional[int] = None,
    ) -> AsyncIterator[MatchRecord]:
        """Stream matches for a pattern.

        Close the stream (e.g. with ``contextlib.aclosing``) to stop the
        search early. Matches already yielded stay valid if the search fails
        later on.
        """
        with _reported():
            root = await self.session.get_path()
            query = SearchQuery(
                pattern=pattern,
                directory=root,
                glob=glob,
                max_per_file=max_per_file if max_per_file is not None else self.max_per_file,
            )
            async with aclosing(self.search_client.search(query)) as matches:
                async for match in matches:
                    yield match

    async def search(
        self,
        pattern: str,
        glob: Optional[str] = None,
        max_results: Optional[int] = None,
    ) -> List[MatchRecord]:
        """Collect up to ``max_results`` matches for a pattern.

        The search is stopped as soon as enough matches have been collected.
        """
        results: List[MatchRecord] = []
        if max_results is not None and max_results <= 0:
            return results

        async with aclosing(self.stream_search(pattern, glob=glob)) as matches:
            async for match in matches:
                results.append(match)
                if max_results is not None and len(results) >= max_results:
                    break
        return results

    async def read_file_range(
        self,
        path: str,
        start_line: Optional[int] = None,
        end_line: Optional[int] = None,
    ) -> str:
        """Read lines ``start_line`` (inclusive) to ``end_line`` (exclusive) of a file."""
        with _reported():
            root = await self.session.get_path()
            return await self.content_fetcher.read_file_range(root, path, start_line, end_line)

    async def glob(self, pattern: str) -> List[str]:
        """List paths in the repository matching a glob pattern."""
        with _reported():
            root = await self.session.get_path()
            return await self.content_fetcher.glob(root, pattern)

    async def cached_file(self, name: Optional[str] = None) -> str:
        """Return the content of a file, cached until the next successful pull.

        Args:
            name: File path relative to the repository root, defaults to the
                configured context file
        """
        name = str(PurePosixPath(name or self.context_file))
        cache = self._caches.get(name)
        if cache is None:
            cache = self._caches[name] = ContentCache(partial(self._read_whole_file, name))
        with _reported():
            try:
                return await cache.get()
            except RepositoryMirrorError:
                # Unreadable names don't keep a cell.
                if not cache.loaded and self._caches.get(name) is cache:
                    del self._caches[name]
                raise

    def invalidate_cached_files(self) -> None:
        """Drop every cached file so the next access re-reads it."""
        for cache in self._caches.values():
            cache.invalidate()
        if self._caches:
            logger.info(f"Invalidated {len(self._caches)} cached file(s)")

    async def _read_whole_file(self, name: str) -> str:
        root = await self.session.get_path()
        return await self.content_fetcher.read_file_range(root, name)
