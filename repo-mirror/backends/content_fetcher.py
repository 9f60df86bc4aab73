"""Content fetcher backend for reading files out of a local checkout."""

import asyncio
import glob
import os
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import List, Optional

from backends.errors import IoError


def slice_lines(content: str, start_line: Optional[int] = None, end_line: Optional[int] = None) -> str:
    """Return lines ``start_line`` (inclusive, 1-based) to ``end_line`` (exclusive).

    Missing bounds mean start and end of file. Out-of-range bounds clamp.
    """
    lines = content.split("\n")
    start = max(0, (start_line if start_line is not None else 1) - 1)
    end = max(0, end_line - 1) if end_line is not None else len(lines)
    return "\n".join(lines[start:end])


class AbstractContentFetcher(ABC):
    """Abstract base class for content fetchers."""

    @abstractmethod
    async def read_file_range(
        self,
        root: str,
        path: str,
        start_line: Optional[int] = None,
        end_line: Optional[int] = None,
    ) -> str:
        """Read a range of lines from a file.

        Args:
            root: Checkout root directory
            path: File path relative to the root
            start_line: First line to return (1-based, inclusive)
            end_line: Line to stop at (exclusive)

        Returns:
            The selected lines joined with newlines

        Raises:
            IoError: If the file can't be read
        """

    @abstractmethod
    async def glob(self, root: str, pattern: str) -> List[str]:
        """List files matching a glob pattern.

        Args:
            root: Checkout root directory
            pattern: Glob pattern relative to the root, ``**`` is recursive

        Returns:
            Matching paths relative to the root

        Raises:
            IoError: If the pattern or the directory can't be used
        """


class LocalContentFetcher(AbstractContentFetcher):
    """Reads files straight from the checkout on disk."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding

    async def read_file_range(
        self,
        root: str,
        path: str,
        start_line: Optional[int] = None,
        end_line: Optional[int] = None,
    ) -> str:
        file_path = self._resolve(root, path)
        try:
            content = await asyncio.to_thread(self._read_text, file_path)
        except OSError as exc:
            raise IoError(f"Failed to read {path}: {exc}", cause=exc) from exc
        return slice_lines(content, start_line, end_line)

    async def glob(self, root: str, pattern: str) -> List[str]:
        if os.path.isabs(pattern) or ".." in PurePosixPath(pattern).parts:
            raise IoError(f"Glob pattern must stay inside the repository: {pattern}")
        if not os.path.isdir(root):
            raise IoError(f"Repository directory does not exist: {root}")
        try:
            matches = await asyncio.to_thread(glob.glob, pattern, root_dir=root, recursive=True)
        except OSError as exc:
            raise IoError(f"Failed to glob {pattern}: {exc}", cause=exc) from exc
        return sorted(match.replace(os.sep, "/") for match in matches)

    def _read_text(self, file_path: Path) -> str:
        # Line endings are left alone so line numbers agree with rg.
        with open(file_path, encoding=self.encoding, errors="replace", newline="") as f:
            return f.read()

    @staticmethod
    def _resolve(root: str, path: str) -> Path:
        root_path = Path(root).resolve()
        file_path = (root_path / path).resolve()
        if file_path != root_path and root_path not in file_path.parents:
            raise IoError(f"Path is outside the repository: {path}")
        return file_path
